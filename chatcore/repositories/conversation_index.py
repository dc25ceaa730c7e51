"""
Conversation index on Redis sorted sets.

Each conversation has a sorted set of message IDs scored by sent_at in
epoch milliseconds. The index may lag the durable store; readers fall back
to the store when a window comes back short.

Sentinel members are scored below every real message (scores start at 0),
so they live and expire with the key they describe and never show up in a
score range read.
"""
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from redis.exceptions import RedisError

from chatcore.config import settings
from chatcore.core.cache import RedisCache, index_key, pinned_key
from chatcore.core.exceptions import CacheUnavailable

# Marks an index that holds the conversation's full history
COMPLETE_SENTINEL = "__complete__"
# Marks a cached pinned set that is empty
PINNED_SENTINEL = "__none__"
SENTINEL_SCORE = -1


class RedisConversationIndex:
    """Per-conversation ordered message index."""

    def __init__(self, cache: RedisCache, ttl: Optional[int] = None):
        """
        Initialize the index.

        Args:
            cache: Redis connection manager
            ttl: Index TTL in seconds, defaults to settings.message_cache_ttl
        """
        self.cache = cache
        self.ttl = ttl or settings.message_cache_ttl

    async def append(self, conversation_key: str, message_id: str, score: int) -> None:
        """Add one entry. Re-adding an existing ID only updates its score."""
        await self.append_many(conversation_key, [(message_id, score)])

    async def append_many(
        self,
        conversation_key: str,
        entries: Iterable[Tuple[str, int]],
        complete: bool = False
    ) -> None:
        """
        Add many entries with a single ZADD.

        Args:
            conversation_key: Conversation key
            entries: (message_id, score) pairs
            complete: Also mark the index as holding the full history. The
                marker is written by the same ZADD, so it never exists
                without the entries it vouches for.

        Raises:
            CacheUnavailable: If Redis fails
        """
        mapping: Dict[str, int] = {message_id: score for message_id, score in entries}
        if not mapping:
            return
        if complete:
            mapping[COMPLETE_SENTINEL] = SENTINEL_SCORE
        key = index_key(conversation_key)
        try:
            async with self.cache.client.pipeline(transaction=False) as pipe:
                pipe.zadd(key, mapping)
                pipe.expire(key, self.ttl)
                await pipe.execute()
        except RedisError as e:
            raise CacheUnavailable("Index append failed", cause=e) from e

    async def range_before_score(self, conversation_key: str, before: int, limit: int) -> List[str]:
        """
        IDs with score strictly below ``before``, newest first.

        Args:
            conversation_key: Conversation key
            before: Exclusive upper bound in epoch milliseconds
            limit: Maximum number of IDs
        """
        try:
            return await self.cache.client.zrevrangebyscore(
                index_key(conversation_key), f"({before}", 0, start=0, num=limit
            )
        except RedisError as e:
            raise CacheUnavailable("Index range read failed", cause=e) from e

    async def range_latest(self, conversation_key: str, limit: int) -> List[str]:
        """The newest ``limit`` IDs, newest first."""
        try:
            return await self.cache.client.zrevrangebyscore(
                index_key(conversation_key), "+inf", 0, start=0, num=limit
            )
        except RedisError as e:
            raise CacheUnavailable("Index range read failed", cause=e) from e

    async def remove(self, conversation_key: str, message_ids: Sequence[str]) -> None:
        """Drop entries, e.g. IDs whose message no longer exists."""
        if not message_ids:
            return
        try:
            await self.cache.client.zrem(index_key(conversation_key), *message_ids)
        except RedisError as e:
            raise CacheUnavailable("Index remove failed", cause=e) from e

    async def is_complete(self, conversation_key: str) -> bool:
        """True when the full history is indexed."""
        try:
            score = await self.cache.client.zscore(index_key(conversation_key), COMPLETE_SENTINEL)
        except RedisError as e:
            raise CacheUnavailable("Index marker read failed", cause=e) from e
        return score is not None

    async def invalidate(self, conversation_key: str) -> None:
        """Drop the whole index; the next read rebuilds it from the store."""
        try:
            await self.cache.client.delete(index_key(conversation_key))
        except RedisError as e:
            raise CacheUnavailable("Index invalidate failed", cause=e) from e

    # Pinned messages

    async def pinned_ids(self, conversation_key: str) -> Optional[List[str]]:
        """
        Pinned message IDs, most recently pinned first.

        Returns:
            The IDs (possibly empty), or None when the pinned set is not cached
        """
        try:
            members = await self.cache.client.zrevrange(pinned_key(conversation_key), 0, -1)
        except RedisError as e:
            raise CacheUnavailable("Pinned read failed", cause=e) from e
        if not members:
            return None
        return [member for member in members if member != PINNED_SENTINEL]

    async def put_pinned(self, conversation_key: str, entries: Iterable[Tuple[str, int]]) -> None:
        """Cache the pinned set, scored by pin time in epoch milliseconds."""
        mapping: Dict[str, int] = {message_id: score for message_id, score in entries}
        mapping[PINNED_SENTINEL] = SENTINEL_SCORE
        key = pinned_key(conversation_key)
        try:
            async with self.cache.client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.zadd(key, mapping)
                pipe.expire(key, settings.aggregate_cache_ttl)
                await pipe.execute()
        except RedisError as e:
            raise CacheUnavailable("Pinned write failed", cause=e) from e

    async def invalidate_pinned(self, conversation_key: str) -> None:
        """Drop the cached pinned set; the next read reloads it from the store."""
        try:
            await self.cache.client.delete(pinned_key(conversation_key))
        except RedisError as e:
            raise CacheUnavailable("Pinned invalidate failed", cause=e) from e
