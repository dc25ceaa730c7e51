"""
Redis connection management.
Provides the shared connection pool and key helpers for the fast cache tier.
"""
import logging
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from chatcore.config import settings
from chatcore.core.exceptions import CacheUnavailable

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis connection manager with connection pooling."""

    def __init__(self, url: Optional[str] = None):
        """
        Initialize the manager.

        Args:
            url: Redis URL, defaults to settings.redis_url
        """
        self.url = url or settings.redis_url
        self.redis: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        A failed connection is logged and left unset: every cache call then
        raises CacheUnavailable and callers fall back to the durable store.
        """
        if not self.url:
            logger.warning("No Redis URL provided, running without the fast cache")
            self.redis = None
            return

        try:
            self.redis = aioredis.from_url(
                self.url,
                password=settings.redis_password or None,
                encoding="utf-8",
                decode_responses=True,
                max_connections=50,
            )
            await self.redis.ping()
            logger.info("Connected to Redis")
        except (RedisError, OSError) as e:
            logger.warning(f"Could not connect to Redis, running without the fast cache: {e}")
            self.redis = None

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    @property
    def client(self) -> aioredis.Redis:
        """
        Connected client.

        Raises:
            CacheUnavailable: If Redis is not connected
        """
        if self.redis is None:
            raise CacheUnavailable("Redis is not connected")
        return self.redis


# Global cache instance
cache = RedisCache()


# Key helpers
def message_key(message_id: str) -> str:
    return f"message:{message_id}"


def index_key(conversation_key: str) -> str:
    return f"index:{conversation_key}"


def pinned_key(conversation_key: str) -> str:
    return f"pinned:{conversation_key}"


def hidden_key(conversation_key: str, user_id: str) -> str:
    return f"hidden:{conversation_key}:{user_id}"


def typing_key(sender_id: str, recipient_id: str) -> str:
    return f"typing:{sender_id}:{recipient_id}"
