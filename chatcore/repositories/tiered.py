"""
Two-tier message repository.

Reads go to the fast cache first and fall through to the durable store,
re-caching what the store returned. The cache is best-effort: its failures
are logged and treated as misses, store failures always propagate.
"""
import asyncio
import logging
from typing import Dict, Iterable, Sequence, Set

from chatcore.core.exceptions import CacheUnavailable
from chatcore.repositories.interfaces import MessageCache, MessageStore
from chatcore.schemas.message import MessageSnapshot

logger = logging.getLogger(__name__)


class TieredMessageRepository:
    """Read-through, write-through combination of a store and a cache."""

    def __init__(self, primary: MessageStore, secondary: MessageCache):
        """
        Initialize repository.

        Args:
            primary: Durable store (ground truth)
            secondary: Fast cache
        """
        self.primary = primary
        self.secondary = secondary

    async def get(self, message_id: str) -> MessageSnapshot:
        """
        Get one message, cache first.

        Raises:
            NotFoundError: If the message is not in the durable store
        """
        try:
            cached = await self.secondary.get(message_id)
        except CacheUnavailable as e:
            logger.warning(f"Cache read failed for {message_id}, using durable store: {e}")
            cached = None
        if cached is not None:
            return cached

        snapshot = await self.primary.find_by_id(message_id)
        await self.cache(snapshot)
        return snapshot

    async def get_many(self, message_ids: Sequence[str]) -> Dict[str, MessageSnapshot]:
        """
        Get many messages with one cache round trip and one store query for misses.

        Args:
            message_ids: Message IDs

        Returns:
            Mapping of the IDs found in either tier; IDs absent from both are omitted
        """
        if not message_ids:
            return {}
        try:
            found = await self.secondary.batch_get(message_ids)
        except CacheUnavailable as e:
            logger.warning(f"Cache batch read failed, using durable store: {e}")
            found = {}

        misses = [message_id for message_id in message_ids if message_id not in found]
        if misses:
            loaded = await self.primary.find_by_ids(misses)
            await self.cache_many(loaded)
            for snapshot in loaded:
                found[snapshot.message_id] = snapshot
        return found

    async def cache(self, snapshot: MessageSnapshot) -> bool:
        """
        Put a snapshot into the cache.

        Returns:
            True if cached, False if the cache failed (logged)
        """
        try:
            await self.secondary.put(snapshot)
            return True
        except CacheUnavailable as e:
            logger.warning(f"Failed to cache message {snapshot.message_id}: {e}")
            return False

    async def cache_many(self, snapshots: Iterable[MessageSnapshot]) -> None:
        """Re-put several snapshots concurrently."""
        await asyncio.gather(*(self.cache(snapshot) for snapshot in snapshots))

    async def evict(self, message_ids: Sequence[str]) -> None:
        """Evict snapshots, logging cache failures."""
        try:
            await self.secondary.delete_many(message_ids)
        except CacheUnavailable as e:
            logger.warning(f"Failed to evict {len(message_ids)} cached messages: {e}")

    async def hidden_ids(self, user_id: str, conversation_key: str) -> Set[str]:
        """Tombstoned message IDs of one user in a conversation."""
        try:
            hidden = await self.secondary.get_hidden(user_id, conversation_key)
        except CacheUnavailable as e:
            logger.warning(f"Tombstone cache read failed, using durable store: {e}")
            hidden = None
        if hidden is not None:
            return hidden

        hidden = await self.primary.hidden_ids(user_id, conversation_key)
        try:
            await self.secondary.put_hidden(user_id, conversation_key, hidden)
        except CacheUnavailable as e:
            logger.warning(f"Failed to cache tombstones for {user_id}: {e}")
        return hidden
