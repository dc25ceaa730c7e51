"""
Fast cache for message snapshots.

Snapshots are immutable JSON values with a TTL; updates re-put a whole new
snapshot. Per-user tombstone sets and typing markers live alongside them.
"""
from datetime import datetime
from typing import Dict, Iterable, Optional, Sequence, Set

from redis.exceptions import RedisError

from chatcore.config import settings
from chatcore.core.cache import RedisCache, hidden_key, message_key, typing_key
from chatcore.core.exceptions import CacheUnavailable
from chatcore.schemas.message import MessageSnapshot
from chatcore.utils.datetime_utils import utc_now

# Keeps an empty tombstone set distinguishable from a cache miss
HIDDEN_SENTINEL = "__none__"


class RedisMessageCache:
    """Redis-backed message snapshot cache."""

    def __init__(
        self,
        cache: RedisCache,
        default_ttl: Optional[int] = None,
        hidden_ttl: Optional[int] = None
    ):
        """
        Initialize message cache.

        Args:
            cache: Redis connection manager
            default_ttl: Snapshot TTL in seconds, defaults to settings.message_cache_ttl
            hidden_ttl: Tombstone set TTL, defaults to settings.aggregate_cache_ttl
        """
        self.cache = cache
        self.default_ttl = default_ttl or settings.message_cache_ttl
        self.hidden_ttl = hidden_ttl or settings.aggregate_cache_ttl

    def _ttl_for(self, snapshot: MessageSnapshot, ttl: Optional[int], now: datetime) -> int:
        """Requested TTL, clamped to the message's remaining lifetime."""
        ttl = ttl or self.default_ttl
        if snapshot.expires_at is not None:
            remaining = int((snapshot.expires_at - now).total_seconds())
            ttl = min(ttl, remaining)
        return ttl

    async def put(self, snapshot: MessageSnapshot, ttl: Optional[int] = None) -> None:
        """
        Store a snapshot, replacing any previous one.

        Already-expired snapshots are not stored.

        Raises:
            CacheUnavailable: If Redis fails
        """
        effective_ttl = self._ttl_for(snapshot, ttl, utc_now())
        if effective_ttl <= 0:
            return
        try:
            await self.cache.client.setex(message_key(snapshot.message_id), effective_ttl, snapshot.to_cache())
        except RedisError as e:
            raise CacheUnavailable("Cache write failed", cause=e) from e

    async def get(self, message_id: str) -> Optional[MessageSnapshot]:
        """Get one snapshot, None on miss."""
        try:
            raw = await self.cache.client.get(message_key(message_id))
        except RedisError as e:
            raise CacheUnavailable("Cache read failed", cause=e) from e
        return MessageSnapshot.from_cache(raw) if raw else None

    async def batch_get(self, message_ids: Sequence[str]) -> Dict[str, MessageSnapshot]:
        """
        Get many snapshots in one round trip.

        Args:
            message_ids: Message IDs

        Returns:
            Mapping of the IDs that were present; misses are omitted
        """
        if not message_ids:
            return {}
        try:
            values = await self.cache.client.mget([message_key(mid) for mid in message_ids])
        except RedisError as e:
            raise CacheUnavailable("Cache batch read failed", cause=e) from e

        found: Dict[str, MessageSnapshot] = {}
        for message_id, raw in zip(message_ids, values):
            if raw:
                found[message_id] = MessageSnapshot.from_cache(raw)
        return found

    async def delete_many(self, message_ids: Sequence[str]) -> None:
        """Evict snapshots."""
        if not message_ids:
            return
        try:
            await self.cache.client.delete(*[message_key(mid) for mid in message_ids])
        except RedisError as e:
            raise CacheUnavailable("Cache delete failed", cause=e) from e

    # Tombstone sets

    async def get_hidden(self, user_id: str, conversation_key: str) -> Optional[Set[str]]:
        """
        Message IDs the user deleted for themselves.

        Returns:
            The set, or None when it is not cached
        """
        try:
            members = await self.cache.client.smembers(hidden_key(conversation_key, user_id))
        except RedisError as e:
            raise CacheUnavailable("Tombstone read failed", cause=e) from e
        if not members:
            return None
        return {member for member in members if member != HIDDEN_SENTINEL}

    async def put_hidden(self, user_id: str, conversation_key: str, message_ids: Iterable[str]) -> None:
        """Replace the cached tombstone set with the store's view."""
        key = hidden_key(conversation_key, user_id)
        try:
            async with self.cache.client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.sadd(key, HIDDEN_SENTINEL, *message_ids)
                pipe.expire(key, self.hidden_ttl)
                await pipe.execute()
        except RedisError as e:
            raise CacheUnavailable("Tombstone write failed", cause=e) from e

    async def add_hidden(self, user_id: str, conversation_key: str, message_id: str) -> None:
        """
        Add one tombstone to a cached set.

        A set that is not cached is left absent so the next read loads the
        complete set from the store.
        """
        key = hidden_key(conversation_key, user_id)
        try:
            if await self.cache.client.exists(key):
                await self.cache.client.sadd(key, message_id)
        except RedisError as e:
            raise CacheUnavailable("Tombstone write failed", cause=e) from e

    # Typing indicators

    async def set_typing(self, sender_id: str, recipient_id: str, is_typing: bool) -> None:
        """Set or clear a short-lived typing marker."""
        key = typing_key(sender_id, recipient_id)
        try:
            if is_typing:
                await self.cache.client.setex(key, settings.typing_indicator_ttl, "1")
            else:
                await self.cache.client.delete(key)
        except RedisError as e:
            raise CacheUnavailable("Typing marker write failed", cause=e) from e
