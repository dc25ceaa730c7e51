"""
Message, MessageDelivery, and MessageReaction models.

The messages table is the durable store: the authoritative record of every
direct, group and channel message. Content is an opaque encrypted envelope
and is never interpreted here.
"""
import enum
from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Enum as SQLEnum,
    func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatcore.models.base import Base

if TYPE_CHECKING:
    from chatcore.models.user_deleted_message import UserDeletedMessage


class ConversationKind(str, enum.Enum):
    """Enum for conversation scopes."""
    DIRECT = "direct"
    GROUP = "group"
    CHANNEL = "channel"


class MessageType(str, enum.Enum):
    """Enum for message types."""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    LINK = "link"

    @property
    def requires_media(self) -> bool:
        """Media types must reference an uploaded media object."""
        return self in (MessageType.IMAGE, MessageType.VIDEO, MessageType.AUDIO, MessageType.DOCUMENT)


class DeliveryState(str, enum.Enum):
    """Enum for per-recipient delivery states, in progress order."""
    SENT = "sent"
    DELIVERED = "delivered"
    SEEN = "seen"

    @property
    def rank(self) -> int:
        return _DELIVERY_RANK[self]

    def earlier_states(self) -> List["DeliveryState"]:
        """States a record may be in for a transition to this state to apply."""
        return [state for state in DeliveryState if state.rank < self.rank]


_DELIVERY_RANK = {
    DeliveryState.SENT: 0,
    DeliveryState.DELIVERED: 1,
    DeliveryState.SEEN: 2,
}


class DeletionState(str, enum.Enum):
    """Enum for message deletion states."""
    NOT_DELETED = "not_deleted"
    DELETED_FOR_SENDER = "deleted_for_sender"
    DELETED_FOR_RECIPIENT = "deleted_for_recipient"
    DELETED_FOR_EVERYONE = "deleted_for_everyone"


class DeletionScope(str, enum.Enum):
    """Who a delete request applies to."""
    SELF = "self"
    EVERYONE = "everyone"


class Message(Base):
    """
    Message model for all conversation kinds.

    conversation_key identifies the ordered conversation the message belongs
    to (direct pair, group or channel) and matches the cache index key.
    """

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="Globally unique message ID, generated before insert"
    )

    conversation_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        doc="Composite conversation key (direct:<a>:<b>, group:<id>, channel:<id>)"
    )

    kind: Mapped[ConversationKind] = mapped_column(
        SQLEnum(ConversationKind, name="conversation_kind", native_enum=False),
        nullable=False,
        doc="Conversation scope kind"
    )

    sender_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        doc="User who sent the message"
    )

    recipient_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Recipient for direct messages (null for group/channel)"
    )

    target_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Group or channel ID (null for direct messages)"
    )

    # Opaque encrypted envelope
    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Encrypted content envelope, never decrypted server-side"
    )

    content_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="SHA-256 of the envelope computed at creation"
    )

    type: Mapped[MessageType] = mapped_column(
        SQLEnum(MessageType, name="message_type", native_enum=False),
        nullable=False,
        doc="Type of message"
    )

    media_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    reply_to_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        doc="Creation timestamp, the only ordering key"
    )

    deletion_state: Mapped[DeletionState] = mapped_column(
        SQLEnum(DeletionState, name="deletion_state", native_enum=False),
        nullable=False,
        default=DeletionState.NOT_DELETED,
        doc="Shared deletion state (per-user deletions live in user_deleted_messages)"
    )

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_pinned: Mapped[bool] = mapped_column(default=False, nullable=False)

    pinned_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    pinned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        doc="Optional expiry, enforced by the external cleanup job"
    )

    deliveries: Mapped[List["MessageDelivery"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MessageDelivery.created_at"
    )

    reactions: Mapped[List["MessageReaction"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MessageReaction.created_at"
    )

    deleted_by_users: Mapped[List["UserDeletedMessage"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, conversation={self.conversation_key}, type={self.type})>"


class MessageDelivery(Base):
    """
    Per-recipient delivery record.

    Transitions are monotonic (sent -> delivered -> seen) and are applied
    with conditional updates, never read-modify-write.
    """

    __tablename__ = "message_deliveries"

    message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True
    )

    recipient_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    state: Mapped[DeliveryState] = mapped_column(
        SQLEnum(DeliveryState, name="delivery_state", native_enum=False),
        nullable=False
    )

    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    message: Mapped["Message"] = relationship(back_populates="deliveries")

    def __repr__(self) -> str:
        return (
            f"<MessageDelivery(message_id={self.message_id}, "
            f"recipient_id={self.recipient_id}, state={self.state})>"
        )


class MessageReaction(Base):
    """
    One reaction token per user per message, last write wins.
    """

    __tablename__ = "message_reactions"

    message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True
    )

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    reaction: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="First reaction time, keeps display order stable across updates"
    )

    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    message: Mapped["Message"] = relationship(back_populates="reactions")

    def __repr__(self) -> str:
        return f"<MessageReaction(message_id={self.message_id}, user_id={self.user_id}, reaction={self.reaction})>"


# Range queries for the conversation index fallback
Index("idx_messages_conversation_sent", Message.conversation_key, Message.sent_at.desc())
