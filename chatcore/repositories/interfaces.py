"""
Storage interfaces used by the orchestrator.

The SQL stores, the Redis cache and the Redis index implement these; tests
substitute in-memory implementations.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from chatcore.models.message import DeletionScope, DeliveryState
from chatcore.schemas.message import DeliveryRecord, MessageSnapshot, ScheduledMessageSnapshot


class MessageStore(Protocol):
    """Authoritative record of every message."""

    async def insert(self, message: MessageSnapshot) -> str: ...

    async def find_by_id(self, message_id: str) -> MessageSnapshot: ...

    async def find_by_ids(self, message_ids: Sequence[str]) -> List[MessageSnapshot]: ...

    async def range_before(
        self, conversation_key: str, before: Optional[datetime], limit: int
    ) -> List[MessageSnapshot]: ...

    async def update_status(
        self, message_id: str, recipient_id: str, state: DeliveryState, at: datetime
    ) -> bool: ...

    async def delivery_for(self, message_id: str) -> Dict[str, DeliveryRecord]: ...

    async def set_reaction(self, message_id: str, user_id: str, reaction: Optional[str]) -> None: ...

    async def mark_deleted(
        self, message_id: str, scope: DeletionScope, user_id: str, at: datetime
    ) -> None: ...

    async def hidden_ids(self, user_id: str, conversation_key: str) -> Set[str]: ...

    async def set_pinned(
        self, message_id: str, pinned: bool, by: Optional[str], at: Optional[datetime]
    ) -> None: ...

    async def pinned(self, conversation_key: str) -> List[MessageSnapshot]: ...

    async def find_expired_before(self, ts: datetime) -> List[MessageSnapshot]: ...

    async def delete_by_ids(self, message_ids: Sequence[str]) -> List[MessageSnapshot]: ...


class MessageCache(Protocol):
    """TTL-bound snapshots keyed by message ID, plus per-user derived sets."""

    async def put(self, snapshot: MessageSnapshot, ttl: Optional[int] = None) -> None: ...

    async def get(self, message_id: str) -> Optional[MessageSnapshot]: ...

    async def batch_get(self, message_ids: Sequence[str]) -> Dict[str, MessageSnapshot]: ...

    async def delete_many(self, message_ids: Sequence[str]) -> None: ...

    async def get_hidden(self, user_id: str, conversation_key: str) -> Optional[Set[str]]: ...

    async def put_hidden(self, user_id: str, conversation_key: str, message_ids: Iterable[str]) -> None: ...

    async def add_hidden(self, user_id: str, conversation_key: str, message_id: str) -> None: ...

    async def set_typing(self, sender_id: str, recipient_id: str, is_typing: bool) -> None: ...


class ConversationIndex(Protocol):
    """Per-conversation ordered set of message IDs scored by send time."""

    async def append(self, conversation_key: str, message_id: str, score: int) -> None: ...

    async def append_many(
        self, conversation_key: str, entries: Iterable[Tuple[str, int]], complete: bool = False
    ) -> None: ...

    async def range_before_score(self, conversation_key: str, before: int, limit: int) -> List[str]: ...

    async def range_latest(self, conversation_key: str, limit: int) -> List[str]: ...

    async def remove(self, conversation_key: str, message_ids: Sequence[str]) -> None: ...

    async def is_complete(self, conversation_key: str) -> bool: ...

    async def invalidate(self, conversation_key: str) -> None: ...

    async def pinned_ids(self, conversation_key: str) -> Optional[List[str]]: ...

    async def put_pinned(self, conversation_key: str, entries: Iterable[Tuple[str, int]]) -> None: ...

    async def invalidate_pinned(self, conversation_key: str) -> None: ...


class ScheduledMessageStore(Protocol):
    """Durable queue of messages waiting for their send time."""

    async def insert(self, scheduled: ScheduledMessageSnapshot) -> str: ...

    async def find_by_id(self, scheduled_id: str) -> ScheduledMessageSnapshot: ...

    async def list_for_sender(self, sender_id: str) -> List[ScheduledMessageSnapshot]: ...

    async def find_due(self, now: datetime, limit: int) -> List[ScheduledMessageSnapshot]: ...

    async def delete(self, scheduled_id: str) -> bool: ...
