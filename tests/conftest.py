"""
Pytest configuration and fixtures for tests.
Provides the SQLite-backed durable store, in-memory cache and index doubles,
a recording Socket.IO transport, and a fully wired orchestrator.
"""
import os

# Settings are read at import time; point them at test backends first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("JWT_SECRET", "test-secret-test-secret-test-secret-42")

import json
from datetime import datetime, timedelta
from typing import AsyncGenerator, Dict, List, Optional, Set, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from chatcore.core.cache import RedisCache
from chatcore.core.exceptions import CacheUnavailable
from chatcore.models import Base, ConversationKind, ConversationRole, MessageType
from chatcore.repositories.conversation_index import COMPLETE_SENTINEL, SENTINEL_SCORE
from chatcore.repositories.message_repo import SqlMessageStore
from chatcore.repositories.scheduled_repo import SqlScheduledMessageStore
from chatcore.schemas.conversation import ConversationScope
from chatcore.schemas.message import MessageSnapshot, ScheduledMessageSnapshot
from chatcore.services.delivery_tracker import DeliveryTracker
from chatcore.services.envelope import JsonEnvelopeValidator
from chatcore.services.notifier import Notifier
from chatcore.services.orchestrator import MessageOrchestrator, content_hash
from chatcore.utils.datetime_utils import from_epoch_millis


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ============================================================================
# Database
# ============================================================================

@pytest.fixture(scope="function")
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    TestSessionLocal = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(db_session) -> SqlMessageStore:
    """Durable message store on the test database."""
    return SqlMessageStore(db_session)


@pytest.fixture
def scheduled_store(db_session) -> SqlScheduledMessageStore:
    """Scheduled message queue on the test database."""
    return SqlScheduledMessageStore(db_session)


# ============================================================================
# In-memory doubles
# ============================================================================

class FixedClock:
    """Settable clock, starts at epoch millisecond 1000."""

    def __init__(self, millis: int = 1000):
        self.now = from_epoch_millis(millis)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, millis: int) -> datetime:
        self.now = self.now + timedelta(milliseconds=millis)
        return self.now

    def set(self, millis: int) -> datetime:
        self.now = from_epoch_millis(millis)
        return self.now


class InMemoryMessageCache:
    """Dict-backed message cache. Set ``fail`` to simulate an outage."""

    def __init__(self):
        self.snapshots: Dict[str, MessageSnapshot] = {}
        self.hidden: Dict[Tuple[str, str], Set[str]] = {}
        self.typing: Set[Tuple[str, str]] = set()
        self.fail = False

    def _check(self):
        if self.fail:
            raise CacheUnavailable("cache down")

    async def put(self, snapshot, ttl=None):
        self._check()
        self.snapshots[snapshot.message_id] = snapshot

    async def get(self, message_id):
        self._check()
        return self.snapshots.get(message_id)

    async def batch_get(self, message_ids):
        self._check()
        return {mid: self.snapshots[mid] for mid in message_ids if mid in self.snapshots}

    async def delete_many(self, message_ids):
        self._check()
        for message_id in message_ids:
            self.snapshots.pop(message_id, None)

    async def get_hidden(self, user_id, conversation_key):
        self._check()
        hidden = self.hidden.get((user_id, conversation_key))
        return set(hidden) if hidden is not None else None

    async def put_hidden(self, user_id, conversation_key, message_ids):
        self._check()
        self.hidden[(user_id, conversation_key)] = set(message_ids)

    async def add_hidden(self, user_id, conversation_key, message_id):
        self._check()
        if (user_id, conversation_key) in self.hidden:
            self.hidden[(user_id, conversation_key)].add(message_id)

    async def set_typing(self, sender_id, recipient_id, is_typing):
        self._check()
        if is_typing:
            self.typing.add((sender_id, recipient_id))
        else:
            self.typing.discard((sender_id, recipient_id))


class InMemoryConversationIndex:
    """
    Dict-backed conversation index with sorted-set semantics.

    Like the Redis index, the completeness marker is a member of the
    conversation's entries, so dropping the entries drops the marker.
    """

    def __init__(self):
        self.entries: Dict[str, Dict[str, int]] = {}
        self.pins: Dict[str, List[str]] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise CacheUnavailable("index down")

    def _newest_first(self, key):
        items = [(mid, score) for mid, score in self.entries.get(key, {}).items() if score >= 0]
        return [mid for mid, _ in sorted(items, key=lambda item: (item[1], item[0]), reverse=True)]

    async def append(self, conversation_key, message_id, score):
        await self.append_many(conversation_key, [(message_id, score)])

    async def append_many(self, conversation_key, entries, complete=False):
        self._check()
        entries = dict(entries)
        if entries:
            if complete:
                entries[COMPLETE_SENTINEL] = SENTINEL_SCORE
            self.entries.setdefault(conversation_key, {}).update(entries)

    async def range_before_score(self, conversation_key, before, limit):
        self._check()
        scores = self.entries.get(conversation_key, {})
        return [mid for mid in self._newest_first(conversation_key) if scores[mid] < before][:limit]

    async def range_latest(self, conversation_key, limit):
        self._check()
        return self._newest_first(conversation_key)[:limit]

    async def remove(self, conversation_key, message_ids):
        self._check()
        for message_id in message_ids:
            self.entries.get(conversation_key, {}).pop(message_id, None)

    async def is_complete(self, conversation_key):
        self._check()
        return COMPLETE_SENTINEL in self.entries.get(conversation_key, {})

    async def invalidate(self, conversation_key):
        self._check()
        self.entries.pop(conversation_key, None)

    def message_ids(self, conversation_key):
        """Indexed message IDs without the marker."""
        return {mid: score for mid, score in self.entries.get(conversation_key, {}).items() if score >= 0}

    async def pinned_ids(self, conversation_key):
        self._check()
        pins = self.pins.get(conversation_key)
        return list(pins) if pins is not None else None

    async def put_pinned(self, conversation_key, entries):
        self._check()
        ordered = sorted(entries, key=lambda item: item[1], reverse=True)
        self.pins[conversation_key] = [mid for mid, _ in ordered]

    async def invalidate_pinned(self, conversation_key):
        self._check()
        self.pins.pop(conversation_key, None)


class RecordingConnections:
    """Stands in for the Socket.IO connection manager and records emits."""

    def __init__(self):
        self.online: Set[str] = set()
        self.emitted: List[Tuple[str, str, dict]] = []
        self.fail = False

    def active_sessions_for(self, user_id):
        return {f"sid-{user_id}"} if user_id in self.online else set()

    async def emit_to_user(self, user_id, event, payload):
        if self.fail:
            raise ConnectionError("transport down")
        self.emitted.append((user_id, event, payload))

    def events_for(self, user_id, event=None):
        return [p for u, e, p in self.emitted if u == user_id and (event is None or e == event)]


class StaticMembership:
    """Membership from a dict of conversation key -> {user: role}."""

    def __init__(self):
        self.roles: Dict[str, Dict[str, ConversationRole]] = {}

    def add(self, scope, user_id, role=ConversationRole.MEMBER):
        self.roles.setdefault(scope.key, {})[user_id] = role

    async def is_member(self, conversation_key, user_id):
        scope = ConversationScope.from_key(conversation_key)
        if scope.is_direct:
            return scope.involves(user_id)
        return user_id in self.roles.get(conversation_key, {})

    async def has_role(self, conversation_key, user_id, role):
        current = self.roles.get(conversation_key, {}).get(user_id)
        return current is not None and current.satisfies(role)

    async def members(self, conversation_key):
        scope = ConversationScope.from_key(conversation_key)
        if scope.is_direct:
            return list(scope.participants)
        return list(self.roles.get(conversation_key, {}))


class StaticBlocks:
    """Set of (blocker, blocked) pairs."""

    def __init__(self):
        self.pairs: Set[Tuple[str, str]] = set()

    async def is_blocked(self, sender_id, recipient_id):
        return (recipient_id, sender_id) in self.pairs


class StaticMedia:
    """Media registry holding (media_id, owner) pairs."""

    def __init__(self):
        self.objects: Set[Tuple[str, str]] = set()

    async def exists(self, media_id, owner_id):
        return (media_id, owner_id) in self.objects


# ============================================================================
# Double fixtures
# ============================================================================

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def memory_cache() -> InMemoryMessageCache:
    return InMemoryMessageCache()


@pytest.fixture
def memory_index() -> InMemoryConversationIndex:
    return InMemoryConversationIndex()


@pytest.fixture
def connections() -> RecordingConnections:
    """Transport with user_a, user_b and user_c online."""
    recording = RecordingConnections()
    recording.online.update({"user_a", "user_b", "user_c"})
    return recording


@pytest.fixture
def notifier(connections) -> Notifier:
    return Notifier(connections)


@pytest.fixture
def membership() -> StaticMembership:
    return StaticMembership()


@pytest.fixture
def blocks() -> StaticBlocks:
    return StaticBlocks()


@pytest.fixture
def media() -> StaticMedia:
    return StaticMedia()


@pytest.fixture
def orchestrator(
    store, scheduled_store, memory_cache, memory_index, notifier, membership, blocks, media, clock
) -> MessageOrchestrator:
    """Orchestrator over the SQLite store and in-memory cache tiers."""
    return MessageOrchestrator(
        store=store,
        cache=memory_cache,
        index=memory_index,
        tracker=DeliveryTracker(store, notifier),
        notifier=notifier,
        membership=membership,
        blocks=blocks,
        envelopes=JsonEnvelopeValidator(),
        scheduled=scheduled_store,
        media=media,
        clock=clock,
    )


# ============================================================================
# Data helpers
# ============================================================================

@pytest.fixture
def direct_scope() -> ConversationScope:
    """Direct conversation between user_a and user_b."""
    return ConversationScope.direct("user_a", "user_b")


@pytest.fixture
def group_scope(membership) -> ConversationScope:
    """Group with user_a as admin, user_m as moderator, user_b and user_c as members."""
    scope = ConversationScope.group("team")
    membership.add(scope, "user_a", ConversationRole.ADMIN)
    membership.add(scope, "user_m", ConversationRole.MODERATOR)
    membership.add(scope, "user_b")
    membership.add(scope, "user_c")
    return scope


@pytest.fixture
def envelope():
    """Build a well-formed encrypted envelope for a conversation kind."""
    def _build(kind: ConversationKind = ConversationKind.DIRECT, message: str = "ciphertext") -> str:
        if kind == ConversationKind.DIRECT:
            return json.dumps({"message": message, "key": "wrapped-key", "iv": "iv-bytes"})
        if kind == ConversationKind.GROUP:
            return json.dumps({"message": message, "keys": {"user_b": "k1"}, "iv": "iv-bytes"})
        return json.dumps({"message": message, "iv": "iv-bytes"})
    return _build


@pytest.fixture
def make_snapshot(envelope):
    """Build a snapshot for direct store tests."""
    counter = {"n": 0}

    def _make(
        scope: ConversationScope,
        sender_id: str = "user_a",
        millis: int = 1000,
        message_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        message_type: MessageType = MessageType.TEXT,
    ) -> MessageSnapshot:
        counter["n"] += 1
        content = envelope(scope.kind, f"ciphertext-{counter['n']}")
        return MessageSnapshot(
            message_id=message_id or f"msg_{counter['n']:04d}",
            scope=scope,
            sender_id=sender_id,
            content=content,
            content_hash=content_hash(content),
            type=message_type,
            sent_at=from_epoch_millis(millis),
            expires_at=expires_at,
        )
    return _make


@pytest.fixture
def make_scheduled(envelope):
    """Build a scheduled message for direct store tests."""
    counter = {"n": 0}

    def _make(
        scope: ConversationScope,
        sender_id: str = "user_a",
        send_at_millis: int = 5000,
        scheduled_id: Optional[str] = None,
    ) -> ScheduledMessageSnapshot:
        counter["n"] += 1
        return ScheduledMessageSnapshot(
            scheduled_id=scheduled_id or f"sch_{counter['n']:04d}",
            scope=scope,
            sender_id=sender_id,
            content=envelope(scope.kind, f"later-{counter['n']}"),
            send_at=from_epoch_millis(send_at_millis),
            created_at=from_epoch_millis(1000),
        )
    return _make


# ============================================================================
# Redis client mock
# ============================================================================

@pytest.fixture
def redis_client():
    """Mocked redis.asyncio client; pipeline commands are queued on ``client.pipe``."""
    client = MagicMock()
    for name in (
        "get", "setex", "mget", "delete", "exists", "smembers", "sadd",
        "zadd", "zrevrange", "zrevrangebyscore", "zrem", "zscore", "ping",
    ):
        setattr(client, name, AsyncMock())
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[])
    client.pipeline.return_value.__aenter__.return_value = pipe
    client.pipe = pipe
    return client


@pytest.fixture
def redis_cache(redis_client) -> RedisCache:
    """RedisCache whose client is the mock."""
    manager = RedisCache(url="redis://test:6379/0")
    manager.redis = redis_client
    return manager
