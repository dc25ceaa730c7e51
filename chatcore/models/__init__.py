"""
SQLAlchemy models for the chatcore message store.

All models must be imported here for Alembic auto-generation to work.
"""

# Import Base first
from chatcore.models.base import Base

# Import all models (order matters for relationships)
from chatcore.models.message import (
    Message,
    MessageDelivery,
    MessageReaction,
    ConversationKind,
    MessageType,
    DeliveryState,
    DeletionState,
    DeletionScope,
)
from chatcore.models.user_deleted_message import UserDeletedMessage
from chatcore.models.conversation import ConversationMember, ConversationRole
from chatcore.models.user_block import UserBlock
from chatcore.models.scheduled_message import ScheduledMessage

# Export all models and enums
__all__ = [
    # Base classes
    "Base",
    # Messages
    "Message",
    "MessageDelivery",
    "MessageReaction",
    "ConversationKind",
    "MessageType",
    "DeliveryState",
    "DeletionState",
    "DeletionScope",
    "UserDeletedMessage",
    # Membership
    "ConversationMember",
    "ConversationRole",
    # User blocking
    "UserBlock",
    # Scheduled sends
    "ScheduledMessage",
]
