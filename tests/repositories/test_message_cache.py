"""
Tests for the Redis message cache.
The redis.asyncio client is mocked; these check keys, TTLs and error mapping.
"""
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from chatcore.core.cache import RedisCache, hidden_key, message_key, typing_key
from chatcore.core.exceptions import CacheUnavailable
from chatcore.repositories.message_cache import HIDDEN_SENTINEL, RedisMessageCache
from chatcore.utils.datetime_utils import utc_now


@pytest.mark.asyncio
class TestSnapshots:
    """Snapshot put/get."""

    async def test_put_uses_default_ttl(self, redis_cache, redis_client, direct_scope, make_snapshot):
        """Test that snapshots are stored as JSON with the configured TTL."""
        cache = RedisMessageCache(redis_cache, default_ttl=600)
        snapshot = make_snapshot(direct_scope)

        await cache.put(snapshot)

        redis_client.setex.assert_awaited_once_with(message_key(snapshot.message_id), 600, snapshot.to_cache())

    async def test_put_clamps_ttl_to_expiry(self, redis_cache, redis_client, direct_scope, make_snapshot):
        """Test that a cached snapshot never outlives its message."""
        cache = RedisMessageCache(redis_cache, default_ttl=600)
        snapshot = make_snapshot(direct_scope, expires_at=utc_now() + timedelta(seconds=60))

        await cache.put(snapshot)

        ttl = redis_client.setex.await_args.args[1]
        assert 0 < ttl <= 60

    async def test_put_skips_expired(self, redis_cache, redis_client, direct_scope, make_snapshot):
        """Test that expired snapshots are not cached."""
        cache = RedisMessageCache(redis_cache)
        snapshot = make_snapshot(direct_scope, expires_at=utc_now() - timedelta(seconds=1))

        await cache.put(snapshot)

        redis_client.setex.assert_not_awaited()

    async def test_get_round_trips(self, redis_cache, redis_client, direct_scope, make_snapshot):
        """Test that a cached snapshot decodes to an equal snapshot."""
        cache = RedisMessageCache(redis_cache)
        snapshot = make_snapshot(direct_scope)
        redis_client.get.return_value = snapshot.to_cache()

        assert await cache.get(snapshot.message_id) == snapshot

    async def test_get_miss(self, redis_cache, redis_client):
        """Test that a missing key returns None."""
        redis_client.get.return_value = None

        assert await RedisMessageCache(redis_cache).get("msg_missing") is None

    async def test_batch_get_omits_misses(self, redis_cache, redis_client, direct_scope, make_snapshot):
        """Test that batch reads use one MGET and skip misses."""
        cache = RedisMessageCache(redis_cache)
        snapshot = make_snapshot(direct_scope)
        redis_client.mget.return_value = [snapshot.to_cache(), None]

        found = await cache.batch_get([snapshot.message_id, "msg_missing"])

        assert found == {snapshot.message_id: snapshot}
        redis_client.mget.assert_awaited_once_with([message_key(snapshot.message_id), message_key("msg_missing")])

    async def test_redis_error_maps_to_cache_unavailable(self, redis_cache, redis_client):
        """Test that driver errors surface as CacheUnavailable."""
        redis_client.get.side_effect = RedisConnectionError("down")

        with pytest.raises(CacheUnavailable):
            await RedisMessageCache(redis_cache).get("msg_1")

    async def test_not_connected(self):
        """Test that an unconnected manager raises CacheUnavailable."""
        cache = RedisMessageCache(RedisCache(url="redis://test:6379/0"))

        with pytest.raises(CacheUnavailable):
            await cache.get("msg_1")


@pytest.mark.asyncio
class TestTombstones:
    """Per-user hidden sets."""

    async def test_get_hidden_miss(self, redis_cache, redis_client):
        """Test that an absent set is a miss, not an empty set."""
        redis_client.smembers.return_value = set()

        assert await RedisMessageCache(redis_cache).get_hidden("user_b", "direct:user_a:user_b") is None

    async def test_get_hidden_filters_sentinel(self, redis_cache, redis_client):
        """Test that a cached empty set comes back as an empty set."""
        redis_client.smembers.return_value = {HIDDEN_SENTINEL}

        assert await RedisMessageCache(redis_cache).get_hidden("user_b", "direct:user_a:user_b") == set()

    async def test_put_hidden_replaces_set(self, redis_cache, redis_client):
        """Test that the set is rewritten in one transaction with a TTL."""
        cache = RedisMessageCache(redis_cache, hidden_ttl=120)
        key = hidden_key("direct:user_a:user_b", "user_b")

        await cache.put_hidden("user_b", "direct:user_a:user_b", ["msg_1"])

        redis_client.pipeline.assert_called_once_with(transaction=True)
        redis_client.pipe.delete.assert_called_once_with(key)
        redis_client.pipe.sadd.assert_called_once_with(key, HIDDEN_SENTINEL, "msg_1")
        redis_client.pipe.expire.assert_called_once_with(key, 120)
        redis_client.pipe.execute.assert_awaited_once()

    async def test_add_hidden_only_when_cached(self, redis_cache, redis_client):
        """Test that a tombstone is not added to an uncached set."""
        cache = RedisMessageCache(redis_cache)
        redis_client.exists.return_value = 0

        await cache.add_hidden("user_b", "direct:user_a:user_b", "msg_1")
        redis_client.sadd.assert_not_awaited()

        redis_client.exists.return_value = 1
        await cache.add_hidden("user_b", "direct:user_a:user_b", "msg_1")
        redis_client.sadd.assert_awaited_once_with(hidden_key("direct:user_a:user_b", "user_b"), "msg_1")


@pytest.mark.asyncio
class TestTypingMarkers:
    """Short-lived typing markers."""

    async def test_set_and_clear(self, redis_cache, redis_client):
        """Test that typing sets a short TTL marker and stopping deletes it."""
        cache = RedisMessageCache(redis_cache)
        key = typing_key("user_a", "user_b")

        await cache.set_typing("user_a", "user_b", True)
        redis_client.setex.assert_awaited_once()
        assert redis_client.setex.await_args.args[0] == key

        await cache.set_typing("user_a", "user_b", False)
        redis_client.delete.assert_awaited_once_with(key)
