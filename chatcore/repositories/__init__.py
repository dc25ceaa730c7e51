"""
Repository layer exports.
Provides the durable store, the fast cache and the conversation index.
"""
from chatcore.repositories.base import BaseRepository
from chatcore.repositories.conversation_index import RedisConversationIndex
from chatcore.repositories.interfaces import (
    ConversationIndex,
    MessageCache,
    MessageStore,
    ScheduledMessageStore,
)
from chatcore.repositories.message_cache import RedisMessageCache
from chatcore.repositories.message_repo import SqlMessageStore
from chatcore.repositories.scheduled_repo import SqlScheduledMessageStore
from chatcore.repositories.tiered import TieredMessageRepository

__all__ = [
    "BaseRepository",
    "ConversationIndex",
    "MessageCache",
    "MessageStore",
    "RedisConversationIndex",
    "RedisMessageCache",
    "ScheduledMessageStore",
    "SqlMessageStore",
    "SqlScheduledMessageStore",
    "TieredMessageRepository",
]
