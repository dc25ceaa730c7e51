"""
Message orchestrator.

Sequences every public message operation across the durable store, the fast
cache, the conversation index, the delivery tracker and the notifier.
Only durable store failures on writes abort an operation; cache, index and
notification failures are logged and the operation proceeds.
"""
import asyncio
import hashlib
import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.config import settings
from chatcore.core.cache import RedisCache, cache as default_cache
from chatcore.core.exceptions import (
    CacheUnavailable,
    ChatCoreError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailable,
    ValidationError,
)
from chatcore.core.websocket import ConnectionManager, connection_manager as default_connections
from chatcore.models.conversation import ConversationRole
from chatcore.models.message import ConversationKind, DeletionScope, DeletionState, DeliveryState, MessageType
from chatcore.repositories.conversation_index import RedisConversationIndex
from chatcore.repositories.interfaces import ConversationIndex, MessageCache, MessageStore, ScheduledMessageStore
from chatcore.repositories.message_cache import RedisMessageCache
from chatcore.repositories.message_repo import SqlMessageStore
from chatcore.repositories.scheduled_repo import SqlScheduledMessageStore
from chatcore.repositories.tiered import TieredMessageRepository
from chatcore.schemas.conversation import ConversationScope
from chatcore.schemas.message import DeliveryRecord, MessagePage, MessageSnapshot, ScheduledMessageSnapshot
from chatcore.services.access import (
    BlockService,
    MediaRegistry,
    MembershipService,
    SqlBlockService,
    SqlMembershipService,
)
from chatcore.services.delivery_tracker import DeliveryTracker
from chatcore.services.envelope import EnvelopeValidator, JsonEnvelopeValidator
from chatcore.services.notifier import Notifier
from chatcore.utils.datetime_utils import ensure_utc, from_epoch_millis, to_epoch_millis, utc_now

logger = logging.getLogger(__name__)

NEW_MESSAGE_EVENT = "new_message"
REACTION_EVENT = "message_reaction"
DELETED_EVENT = "message_deleted"
PINNED_EVENT = "message_pinned"
UNPINNED_EVENT = "message_unpinned"
TYPING_EVENT = "typing"


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


def new_scheduled_id() -> str:
    return f"sch_{uuid.uuid4().hex}"


def content_hash(content: str) -> str:
    """SHA-256 hex digest of the envelope's UTF-8 bytes."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def truncate_to_millis(dt: datetime) -> datetime:
    """Drop sub-millisecond precision so sent_at round-trips through index scores."""
    return dt.replace(microsecond=dt.microsecond // 1000 * 1000)


class MessageOrchestrator:
    """Coordinates send, scheduling, fetch, status, reaction, deletion and pin operations."""

    def __init__(
        self,
        store: MessageStore,
        cache: MessageCache,
        index: ConversationIndex,
        tracker: DeliveryTracker,
        notifier: Notifier,
        membership: MembershipService,
        blocks: BlockService,
        envelopes: EnvelopeValidator,
        scheduled: Optional[ScheduledMessageStore] = None,
        media: Optional[MediaRegistry] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize orchestrator.

        Args:
            store: Durable store (ground truth)
            cache: Fast snapshot cache
            index: Conversation index
            tracker: Delivery tracker
            notifier: Real-time notifier
            membership: Membership and role collaborator
            blocks: Block list collaborator
            envelopes: Encrypted envelope validator
            scheduled: Scheduled message queue; scheduling is unavailable without one
            media: Optional media registry; media references are not checked without one
            clock: Source of the current UTC time
        """
        self.store = store
        self.cache = cache
        self.index = index
        self.messages = TieredMessageRepository(primary=store, secondary=cache)
        self.tracker = tracker
        self.notifier = notifier
        self.membership = membership
        self.blocks = blocks
        self.envelopes = envelopes
        self.scheduled = scheduled
        self.media = media
        self.clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    def _page_size(self, limit: Optional[int]) -> int:
        if limit is None:
            return settings.default_page_size
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        return min(limit, settings.max_page_size)

    async def _require_member(self, scope: ConversationScope, user_id: str) -> None:
        if scope.is_direct:
            allowed = scope.involves(user_id)
        else:
            allowed = await self.membership.is_member(scope.key, user_id)
        if not allowed:
            raise PermissionDeniedError(f"User {user_id} is not a member of {scope.key}")

    async def _participants(self, scope: ConversationScope) -> List[str]:
        if scope.is_direct:
            return list(dict.fromkeys(scope.participants))
        return await self.membership.members(scope.key)

    async def _notify_participants(
        self,
        scope: ConversationScope,
        event_type: str,
        payload: Dict[str, object],
        exclude: Optional[str] = None
    ) -> None:
        """Fan an event out to a conversation. Failures are logged, never raised."""
        try:
            recipients = [user for user in await self._participants(scope) if user != exclude]
            await self.notifier.notify_many(recipients, event_type, payload)
        except Exception:
            logger.exception(f"Failed to notify {scope.key} about {event_type}")

    async def _load_visible(self, requester_id: str, message_id: str) -> MessageSnapshot:
        """
        Load a message the requester is allowed to see.

        Raises:
            NotFoundError: If absent, expired or deleted for the requester
            PermissionDeniedError: If the requester is not in the conversation
        """
        snapshot = await self.messages.get(message_id)
        await self._require_member(snapshot.scope, requester_id)
        if snapshot.is_expired(self._now()):
            raise NotFoundError(f"Message {message_id} not found")
        hidden = await self.messages.hidden_ids(requester_id, snapshot.conversation_key)
        if message_id in hidden:
            raise NotFoundError(f"Message {message_id} not found")
        return snapshot

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def _validate_send(
        self,
        sender_id: str,
        scope: ConversationScope,
        content: str,
        message_type: MessageType,
        media_id: Optional[str],
        reply_to_id: Optional[str],
        expires_at: Optional[datetime],
        now: datetime
    ) -> None:
        if scope.is_direct:
            if not scope.involves(sender_id):
                raise PermissionDeniedError("Sender is not a participant of this conversation")
            recipient_id = scope.counterpart(sender_id)
            if recipient_id == sender_id:
                raise ValidationError("Cannot send a direct message to yourself")
            if await self.blocks.is_blocked(sender_id, recipient_id):
                raise PermissionDeniedError("You cannot message this user")
        elif not await self.membership.is_member(scope.key, sender_id):
            raise PermissionDeniedError(f"User {sender_id} is not a member of {scope.key}")

        if not self.envelopes.is_well_formed(scope.kind, content):
            raise ValidationError("Malformed encrypted content envelope")

        if message_type.requires_media and not media_id:
            raise ValidationError(f"{message_type.value} messages require a media_id")
        if media_id and self.media is not None and not await self.media.exists(media_id, sender_id):
            raise ValidationError(f"Media {media_id} not found")

        if reply_to_id:
            try:
                original = await self.messages.get(reply_to_id)
            except NotFoundError:
                raise ValidationError(f"Reply target {reply_to_id} not found")
            if original.conversation_key != scope.key:
                raise ValidationError("Reply target belongs to another conversation")

        if expires_at is not None and ensure_utc(expires_at) <= now:
            raise ValidationError("expires_at must be in the future")

    async def send(
        self,
        sender_id: str,
        scope: ConversationScope,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        media_id: Optional[str] = None,
        reply_to_id: Optional[str] = None,
        expires_at: Optional[datetime] = None
    ) -> MessageSnapshot:
        """
        Send a message.

        The durable write is the commit point: once it succeeds the message
        is sent, and caching, indexing and notifying run to completion even
        if the caller is cancelled.

        Args:
            sender_id: Sending user
            scope: Target conversation
            content: Encrypted envelope
            message_type: Message type
            media_id: Uploaded media reference
            reply_to_id: Message being replied to
            expires_at: Optional expiry

        Returns:
            The persisted message

        Raises:
            ValidationError: If validation fails (nothing is written)
            PermissionDeniedError: If the sender may not post here
            ConflictError: If ID generation collides twice
            StoreUnavailable: If the durable write fails
        """
        return await self._send(
            sender_id, scope, content, message_type, media_id, reply_to_id, expires_at
        )

    async def _send(
        self,
        sender_id: str,
        scope: ConversationScope,
        content: str,
        message_type: MessageType,
        media_id: Optional[str],
        reply_to_id: Optional[str],
        expires_at: Optional[datetime],
        message_id: Optional[str] = None
    ) -> MessageSnapshot:
        """
        Validate, persist and announce a message.

        Generated IDs are retried once on collision. A caller-supplied ID is
        not, so sending the same ID twice raises ConflictError.
        """
        now = truncate_to_millis(self._now())
        await self._validate_send(
            sender_id, scope, content, message_type, media_id, reply_to_id, expires_at, now
        )

        attempts = 1 if message_id else 2
        snapshot = None
        for attempt in range(1, attempts + 1):
            candidate = MessageSnapshot(
                message_id=message_id or new_message_id(),
                scope=scope,
                sender_id=sender_id,
                content=content,
                content_hash=content_hash(content),
                type=message_type,
                media_id=media_id,
                reply_to_id=reply_to_id,
                sent_at=now,
                expires_at=ensure_utc(expires_at),
            )
            try:
                await self.store.insert(candidate)
            except ConflictError:
                if attempt == attempts:
                    raise
                logger.warning(f"Message ID collision on {candidate.message_id}, retrying with a new ID")
                continue
            snapshot = candidate
            break

        await asyncio.shield(self._after_persist(snapshot))
        logger.info(f"Message {snapshot.message_id} sent to {scope.key}")
        return snapshot

    async def _after_persist(self, snapshot: MessageSnapshot) -> None:
        """Best-effort caching, indexing and notifying of a persisted message."""
        await self.messages.cache(snapshot)
        key = snapshot.conversation_key
        try:
            await self.index.append(key, snapshot.message_id, snapshot.score)
        except CacheUnavailable as e:
            logger.warning(f"Failed to index message {snapshot.message_id}, dropping index {key}: {e}")
            # Full index windows are trusted, so the index must not keep a gap
            try:
                await self.index.invalidate(key)
            except CacheUnavailable as drop_error:
                logger.warning(f"Failed to drop index {key}: {drop_error}")

        await self._notify_participants(
            snapshot.scope, NEW_MESSAGE_EVENT, snapshot.notification_payload(), exclude=snapshot.sender_id
        )

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(
        self,
        requester_id: str,
        scope: ConversationScope,
        limit: Optional[int] = None,
        before: Optional[int] = None,
        mark_seen: bool = False
    ) -> MessagePage:
        """
        Fetch one page of a conversation, newest first.

        Messages expired or deleted for the requester are left out, so a page
        may hold fewer than ``limit`` messages while ``has_more`` is still
        true. Messages not authored by the requester are then marked
        delivered (or seen) on a best-effort basis; the returned snapshots
        show the state before that marking.

        Args:
            requester_id: Reading user
            scope: Conversation to read
            limit: Page size
            before: Exclusive upper bound on sent_at in epoch millis, None for the latest page
            mark_seen: Record seen instead of delivered

        Returns:
            MessagePage with the messages and the cursor for the next page
        """
        limit = self._page_size(limit)
        await self._require_member(scope, requester_id)
        key = scope.key
        now = self._now()

        window, has_more = await self._read_window(key, limit, before)
        hidden = await self.messages.hidden_ids(requester_id, key)
        visible = [
            snapshot for snapshot in window
            if not snapshot.is_expired(now) and snapshot.message_id not in hidden
        ]

        page = MessagePage(
            messages=visible,
            next_before=window[-1].score if window else None,
            has_more=has_more,
        )

        target = DeliveryState.SEEN if mark_seen else DeliveryState.DELIVERED
        await self._auto_mark(visible, requester_id, target, now)
        return page

    async def _index_window(self, key: str, limit: int, before: Optional[int]) -> Optional[List[str]]:
        try:
            if before is None:
                return await self.index.range_latest(key, limit)
            return await self.index.range_before_score(key, before, limit)
        except CacheUnavailable as e:
            logger.warning(f"Index read failed for {key}, using durable store: {e}")
            return None

    async def _index_complete(self, key: str) -> bool:
        try:
            return await self.index.is_complete(key)
        except CacheUnavailable as e:
            logger.warning(f"Index marker read failed for {key}: {e}")
            return False

    async def _read_window(
        self,
        key: str,
        limit: int,
        before: Optional[int]
    ) -> Tuple[List[MessageSnapshot], bool]:
        """
        Resolve the ID window and load its messages, sorted newest first.

        Returns:
            (messages, has_more)
        """
        ids = await self._index_window(key, limit, before)
        if ids is None or (len(ids) < limit and not await self._index_complete(key)):
            return await self._fallback_window(key, limit, before)

        found = await self.messages.get_many(ids)
        stale = [message_id for message_id in ids if message_id not in found]
        if stale:
            try:
                await self.index.remove(key, stale)
            except CacheUnavailable as e:
                logger.warning(f"Failed to drop {len(stale)} stale index entries for {key}: {e}")

        window = sorted(found.values(), key=lambda m: m.sort_key, reverse=True)
        return window, len(ids) >= limit

    async def _fallback_window(
        self,
        key: str,
        limit: int,
        before: Optional[int]
    ) -> Tuple[List[MessageSnapshot], bool]:
        """Read the window from the durable store and backfill index and cache."""
        upper = from_epoch_millis(before) if before is not None else None
        rows = await self.store.range_before(key, upper, limit)

        # Only a short latest page proves the beginning of the conversation was reached
        complete = before is None and len(rows) < limit
        try:
            await self.index.append_many(key, [(m.message_id, m.score) for m in rows], complete=complete)
        except CacheUnavailable as e:
            logger.warning(f"Failed to backfill index for {key}: {e}")
        await self.messages.cache_many(rows)

        window = sorted(rows, key=lambda m: m.sort_key, reverse=True)
        return window, len(rows) >= limit

    async def _record(self, snapshot: MessageSnapshot, user_id: str, state: DeliveryState, at: datetime) -> bool:
        if state == DeliveryState.SEEN:
            return await self.tracker.record_seen(snapshot, user_id, at)
        return await self.tracker.record_delivered(snapshot, user_id, at)

    async def _auto_mark(
        self,
        messages: Sequence[MessageSnapshot],
        requester_id: str,
        target: DeliveryState,
        now: datetime
    ) -> None:
        """Best-effort delivery marking for fetched messages."""
        updated: List[MessageSnapshot] = []
        stale: List[str] = []
        for snapshot in messages:
            if snapshot.sender_id == requester_id or snapshot.is_deleted_for_everyone:
                continue
            if snapshot.delivery_state_of(requester_id).rank >= target.rank:
                continue
            try:
                changed = await self._record(snapshot, requester_id, target, now)
            except ChatCoreError as e:
                logger.warning(f"Auto-marking {snapshot.message_id} as {target.value} failed: {e}")
                continue
            if changed:
                updated.append(snapshot.with_delivery(requester_id, target, now))
            else:
                stale.append(snapshot.message_id)

        await self.messages.cache_many(updated)
        if stale:
            await self.messages.evict(stale)

    # ------------------------------------------------------------------
    # Single message, status
    # ------------------------------------------------------------------

    async def get_message(self, requester_id: str, message_id: str) -> MessageSnapshot:
        """
        Get one message visible to the requester.

        Raises:
            NotFoundError: If absent, expired or deleted for the requester
            PermissionDeniedError: If the requester is not in the conversation
        """
        return await self._load_visible(requester_id, message_id)

    async def update_status(self, requester_id: str, message_id: str, state: DeliveryState) -> bool:
        """
        Explicitly acknowledge a message as delivered or seen.

        Returns:
            True if the state changed

        Raises:
            ValidationError: If the state is not delivered or seen
            PermissionDeniedError: If the requester is the sender or not a member
        """
        if state == DeliveryState.SENT:
            raise ValidationError("State must be 'delivered' or 'seen'")

        snapshot = await self._load_visible(requester_id, message_id)
        if snapshot.sender_id == requester_id:
            raise PermissionDeniedError("Senders cannot acknowledge their own messages")

        now = self._now()
        changed = await self._record(snapshot, requester_id, state, now)
        if changed:
            await self.messages.cache(snapshot.with_delivery(requester_id, state, now))
        return changed

    async def get_delivery_status(self, requester_id: str, message_id: str) -> Dict[str, DeliveryRecord]:
        """
        Delivery records of a message, read from the durable store.

        The sender sees every recipient; a recipient sees only its own record.
        """
        snapshot = await self._load_visible(requester_id, message_id)
        records = await self.store.delivery_for(message_id)
        if snapshot.sender_id == requester_id:
            return records
        return {user: record for user, record in records.items() if user == requester_id}

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def react(self, requester_id: str, message_id: str, reaction: Optional[str]) -> MessageSnapshot:
        """
        Set or clear the requester's reaction (last write wins).

        Returns:
            Snapshot with the updated reactions
        """
        snapshot = await self._load_visible(requester_id, message_id)
        if snapshot.is_deleted_for_everyone:
            raise ValidationError("Cannot react to a deleted message")

        await self.store.set_reaction(message_id, requester_id, reaction)
        updated = snapshot.with_reaction(requester_id, reaction)
        await self.messages.cache(updated)

        await self._notify_participants(
            snapshot.scope,
            REACTION_EVENT,
            {
                "message_id": message_id,
                "conversation_key": snapshot.conversation_key,
                "user_id": requester_id,
                "reaction": reaction,
            },
            exclude=requester_id,
        )
        return updated

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete(self, requester_id: str, message_id: str, for_everyone: bool = False) -> MessageSnapshot:
        """
        Delete a message for everyone or only for the requester.

        Deleting for everyone needs the sender or a moderator and strips the
        content from the shared record. Deleting for self only writes a
        tombstone. Both are idempotent.

        Returns:
            The message as the requester now sees it
        """
        if for_everyone:
            snapshot = await self.messages.get(message_id)
            await self._require_member(snapshot.scope, requester_id)
            return await self._delete_for_everyone(requester_id, snapshot)

        snapshot = await self._load_visible(requester_id, message_id)
        await self.store.mark_deleted(message_id, DeletionScope.SELF, requester_id, self._now())
        try:
            await self.cache.add_hidden(requester_id, snapshot.conversation_key, message_id)
        except CacheUnavailable as e:
            logger.warning(f"Failed to cache tombstone of {message_id} for {requester_id}: {e}")

        try:
            await self.notifier.notify(
                requester_id,
                DELETED_EVENT,
                {"message_id": message_id, "conversation_key": snapshot.conversation_key, "for_everyone": False},
            )
        except ChatCoreError as e:
            logger.warning(f"Failed to notify {requester_id} about deletion of {message_id}: {e}")
        return snapshot

    async def _delete_for_everyone(self, requester_id: str, snapshot: MessageSnapshot) -> MessageSnapshot:
        scope = snapshot.scope
        if snapshot.sender_id != requester_id:
            is_moderator = not scope.is_direct and await self.membership.has_role(
                scope.key, requester_id, ConversationRole.MODERATOR
            )
            if not is_moderator:
                raise PermissionDeniedError("Only the sender or a moderator can delete for everyone")

        if snapshot.is_deleted_for_everyone:
            return snapshot

        now = self._now()
        await self.store.mark_deleted(snapshot.message_id, DeletionScope.EVERYONE, requester_id, now)
        updated = snapshot.model_copy(update={
            "deletion_state": DeletionState.DELETED_FOR_EVERYONE,
            "deleted_at": now,
            "content": None,
        })
        await self.messages.cache(updated)

        await self._notify_participants(
            scope,
            DELETED_EVENT,
            {
                "message_id": snapshot.message_id,
                "conversation_key": snapshot.conversation_key,
                "deleted_by": requester_id,
                "for_everyone": True,
            },
        )
        return updated

    # ------------------------------------------------------------------
    # Pinning
    # ------------------------------------------------------------------

    async def _set_pinned(self, requester_id: str, message_id: str, pinned: bool) -> MessageSnapshot:
        snapshot = await self._load_visible(requester_id, message_id)
        scope = snapshot.scope
        if scope.is_direct:
            raise ValidationError("Only group and channel messages can be pinned")
        if not await self.membership.has_role(scope.key, requester_id, ConversationRole.MODERATOR):
            raise PermissionDeniedError("Only moderators can pin messages")
        if pinned and snapshot.is_deleted_for_everyone:
            raise ValidationError("Cannot pin a deleted message")

        now = self._now()
        await self.store.set_pinned(message_id, pinned, requester_id, now)
        updated = snapshot.model_copy(update={
            "is_pinned": pinned,
            "pinned_by": requester_id if pinned else None,
            "pinned_at": now if pinned else None,
        })
        await self.messages.cache(updated)
        try:
            await self.index.invalidate_pinned(scope.key)
        except CacheUnavailable as e:
            logger.warning(f"Failed to invalidate pinned set of {scope.key}: {e}")

        await self._notify_participants(
            scope,
            PINNED_EVENT if pinned else UNPINNED_EVENT,
            {"message_id": message_id, "conversation_key": scope.key, "by": requester_id},
        )
        return updated

    async def pin(self, requester_id: str, message_id: str) -> MessageSnapshot:
        """Pin a group or channel message (moderators only)."""
        return await self._set_pinned(requester_id, message_id, True)

    async def unpin(self, requester_id: str, message_id: str) -> MessageSnapshot:
        """Unpin a group or channel message (moderators only)."""
        return await self._set_pinned(requester_id, message_id, False)

    async def pinned(self, requester_id: str, scope: ConversationScope) -> List[MessageSnapshot]:
        """
        Pinned messages of a conversation, most recently pinned first.

        Served from the pinned index when cached, otherwise from the durable
        store, which then repopulates the index.
        """
        await self._require_member(scope, requester_id)
        key = scope.key

        try:
            ids = await self.index.pinned_ids(key)
        except CacheUnavailable as e:
            logger.warning(f"Pinned index read failed for {key}: {e}")
            ids = None

        if ids is None:
            snapshots = await self.store.pinned(key)
            try:
                await self.index.put_pinned(key, [(m.message_id, to_epoch_millis(m.pinned_at)) for m in snapshots])
            except CacheUnavailable as e:
                logger.warning(f"Failed to cache pinned set of {key}: {e}")
            await self.messages.cache_many(snapshots)
        else:
            found = await self.messages.get_many(ids)
            snapshots = [found[message_id] for message_id in ids if message_id in found and found[message_id].is_pinned]

        now = self._now()
        hidden = await self.messages.hidden_ids(requester_id, key)
        return [m for m in snapshots if not m.is_expired(now) and m.message_id not in hidden]

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------

    async def send_typing(self, sender_id: str, scope: ConversationScope, is_typing: bool = True) -> None:
        """Publish a transient typing indicator (direct and group conversations)."""
        if scope.kind == ConversationKind.CHANNEL:
            raise ValidationError("Typing indicators are not supported in channels")
        await self._require_member(scope, sender_id)

        marker_target = scope.counterpart(sender_id) if scope.is_direct else scope.key
        try:
            await self.cache.set_typing(sender_id, marker_target, is_typing)
        except CacheUnavailable as e:
            logger.warning(f"Failed to store typing marker for {sender_id}: {e}")

        await self._notify_participants(
            scope,
            TYPING_EVENT,
            {"conversation_key": scope.key, "user_id": sender_id, "is_typing": is_typing},
            exclude=sender_id,
        )

    # ------------------------------------------------------------------
    # Scheduled sends
    # ------------------------------------------------------------------

    def _scheduled_store(self) -> ScheduledMessageStore:
        if self.scheduled is None:
            raise ChatCoreError("Scheduled messages are not configured")
        return self.scheduled

    async def schedule(
        self,
        sender_id: str,
        scope: ConversationScope,
        content: str,
        send_at: datetime,
        message_type: MessageType = MessageType.TEXT,
        media_id: Optional[str] = None,
        reply_to_id: Optional[str] = None,
        expires_at: Optional[datetime] = None
    ) -> ScheduledMessageSnapshot:
        """
        Accept a message to be sent at ``send_at``.

        The message is validated now as if it were sent now, and again when
        it is due. Nothing is cached, indexed or announced before then.

        Raises:
            ValidationError: If send_at is not in the future, the message
                would expire before it is sent, or send validation fails
            PermissionDeniedError: If the sender may not post here
            StoreUnavailable: If the durable write fails
        """
        store = self._scheduled_store()
        now = truncate_to_millis(self._now())
        send_at = truncate_to_millis(ensure_utc(send_at))
        if send_at <= now:
            raise ValidationError("send_at must be in the future")
        if expires_at is not None and ensure_utc(expires_at) <= send_at:
            raise ValidationError("expires_at must be after send_at")
        await self._validate_send(
            sender_id, scope, content, message_type, media_id, reply_to_id, expires_at, now
        )

        scheduled = ScheduledMessageSnapshot(
            scheduled_id=new_scheduled_id(),
            scope=scope,
            sender_id=sender_id,
            content=content,
            type=message_type,
            media_id=media_id,
            reply_to_id=reply_to_id,
            expires_at=ensure_utc(expires_at),
            send_at=send_at,
            created_at=now,
        )
        await store.insert(scheduled)
        logger.info(f"Message {scheduled.scheduled_id} scheduled for {scope.key} at {send_at.isoformat()}")
        return scheduled

    async def list_scheduled(self, sender_id: str) -> List[ScheduledMessageSnapshot]:
        """Pending scheduled messages of the sender, soonest first."""
        return await self._scheduled_store().list_for_sender(sender_id)

    async def cancel_scheduled(self, sender_id: str, scheduled_id: str) -> None:
        """
        Cancel a pending scheduled message.

        Raises:
            NotFoundError: If it does not exist, was already sent, or belongs to another user
        """
        store = self._scheduled_store()
        scheduled = await store.find_by_id(scheduled_id)
        if scheduled.sender_id != sender_id or not await store.delete(scheduled_id):
            raise NotFoundError(f"Scheduled message {scheduled_id} not found")
        logger.info(f"Scheduled message {scheduled_id} cancelled by {sender_id}")

    async def process_due_scheduled(self, now: Optional[datetime] = None, limit: int = 100) -> int:
        """
        Send every scheduled message whose time has come.

        Each due message goes through the normal send path under an ID
        derived from its scheduled ID, then its row is removed. Messages
        that no longer pass validation are dropped. A store failure keeps
        the row for the next run, and a run that finds the message already
        sent only removes the row.

        Args:
            now: Reference time, defaults to the clock
            limit: Maximum number of due messages handled in this run

        Returns:
            Number of messages sent
        """
        store = self._scheduled_store()
        now = ensure_utc(now) if now is not None else self._now()
        sent = 0
        for scheduled in await store.find_due(now, limit):
            try:
                await self._send(
                    scheduled.sender_id,
                    scheduled.scope,
                    scheduled.content,
                    scheduled.type,
                    scheduled.media_id,
                    scheduled.reply_to_id,
                    scheduled.expires_at,
                    message_id=scheduled.message_id,
                )
                sent += 1
            except ConflictError:
                logger.info(f"Scheduled message {scheduled.scheduled_id} was already sent")
            except ValidationError as e:
                logger.warning(f"Dropping scheduled message {scheduled.scheduled_id}: {e.message}")
            except StoreUnavailable as e:
                logger.warning(f"Keeping scheduled message {scheduled.scheduled_id} for the next run: {e.message}")
                continue
            await store.delete(scheduled.scheduled_id)
        return sent

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def delete_messages(self, message_ids: Sequence[str]) -> int:
        """
        Physically delete messages, then evict them from cache and indexes.

        Returns:
            Number of messages deleted from the durable store
        """
        removed = await self.store.delete_by_ids(message_ids)
        if not removed:
            return 0

        await self.messages.evict([m.message_id for m in removed])
        by_conversation: Dict[str, List[str]] = {}
        for snapshot in removed:
            by_conversation.setdefault(snapshot.conversation_key, []).append(snapshot.message_id)
        for key, ids in by_conversation.items():
            try:
                await self.index.remove(key, ids)
                if any(m.is_pinned for m in removed if m.conversation_key == key):
                    await self.index.invalidate_pinned(key)
            except CacheUnavailable as e:
                logger.warning(f"Failed to drop {len(ids)} deleted messages from index {key}: {e}")
        return len(removed)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """
        Delete every message whose expiry has passed.

        Returns:
            Number of deleted messages
        """
        now = ensure_utc(now) if now is not None else self._now()
        expired = await self.store.find_expired_before(now)
        return await self.delete_messages([m.message_id for m in expired])


def build_orchestrator(
    db: AsyncSession,
    redis_cache: RedisCache = default_cache,
    connections: ConnectionManager = default_connections,
    media: Optional[MediaRegistry] = None
) -> MessageOrchestrator:
    """
    Wire the production orchestrator for one database session.

    Args:
        db: Database session scoped to the request or job
        redis_cache: Redis connection manager
        connections: Socket.IO connection manager
        media: Optional media registry
    """
    store = SqlMessageStore(db)
    notifier = Notifier(connections)
    return MessageOrchestrator(
        store=store,
        cache=RedisMessageCache(redis_cache),
        index=RedisConversationIndex(redis_cache),
        tracker=DeliveryTracker(store, notifier),
        notifier=notifier,
        membership=SqlMembershipService(db),
        blocks=SqlBlockService(db),
        envelopes=JsonEnvelopeValidator(),
        scheduled=SqlScheduledMessageStore(db),
        media=media,
    )
