"""
Entry points for the external job scheduler: expiry sweeps, bulk deletion
and due scheduled sends.

Scheduling is owned by the deployment (cron, worker); these functions run
one sweep each with their own database session and Redis connection.
"""
import logging
from datetime import datetime
from typing import Optional, Sequence

from chatcore.core.cache import RedisCache
from chatcore.core.database import AsyncSessionLocal
from chatcore.services.orchestrator import build_orchestrator

logger = logging.getLogger(__name__)


async def purge_expired_messages(now: Optional[datetime] = None, redis_cache: Optional[RedisCache] = None) -> int:
    """
    Delete every message whose expiry has passed.

    Args:
        now: Reference time, defaults to the current UTC time
        redis_cache: Connected Redis manager; a private connection is opened when omitted

    Returns:
        Number of deleted messages
    """
    owns_cache = redis_cache is None
    if owns_cache:
        redis_cache = RedisCache()
        await redis_cache.connect()

    try:
        async with AsyncSessionLocal() as db:
            orchestrator = build_orchestrator(db, redis_cache=redis_cache)
            deleted = await orchestrator.purge_expired(now)
    finally:
        if owns_cache:
            await redis_cache.disconnect()

    logger.info(f"Expiry sweep deleted {deleted} messages")
    return deleted


async def delete_messages(message_ids: Sequence[str], redis_cache: Optional[RedisCache] = None) -> int:
    """
    Delete messages by ID from the store, the cache and the indexes.

    Returns:
        Number of deleted messages
    """
    owns_cache = redis_cache is None
    if owns_cache:
        redis_cache = RedisCache()
        await redis_cache.connect()

    try:
        async with AsyncSessionLocal() as db:
            orchestrator = build_orchestrator(db, redis_cache=redis_cache)
            deleted = await orchestrator.delete_messages(message_ids)
    finally:
        if owns_cache:
            await redis_cache.disconnect()

    logger.info(f"Deleted {deleted} of {len(message_ids)} requested messages")
    return deleted


async def process_due_scheduled(now: Optional[datetime] = None, redis_cache: Optional[RedisCache] = None) -> int:
    """
    Send every scheduled message whose send time has passed.

    Args:
        now: Reference time, defaults to the current UTC time
        redis_cache: Connected Redis manager; a private connection is opened when omitted

    Returns:
        Number of sent messages
    """
    owns_cache = redis_cache is None
    if owns_cache:
        redis_cache = RedisCache()
        await redis_cache.connect()

    try:
        async with AsyncSessionLocal() as db:
            orchestrator = build_orchestrator(db, redis_cache=redis_cache)
            sent = await orchestrator.process_due_scheduled(now)
    finally:
        if owns_cache:
            await redis_cache.disconnect()

    logger.info(f"Scheduled send run sent {sent} messages")
    return sent
