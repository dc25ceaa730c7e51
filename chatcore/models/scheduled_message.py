"""
ScheduledMessage model - messages accepted now and sent later.

Rows are validated when scheduled and handed to the normal send path by the
external job scheduler once send_at has passed; the row is removed after it
is sent or permanently rejected.
"""
from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text, Enum as SQLEnum, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.models.base import Base
from chatcore.models.message import ConversationKind, MessageType


class ScheduledMessage(Base):
    """
    A message waiting for its send time.

    The eventual message ID is derived from this row's ID, so sending the
    same row twice is rejected by the messages primary key.
    """

    __tablename__ = "scheduled_messages"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="Scheduled message ID (sch_<hex>)"
    )

    conversation_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Target conversation key"
    )

    kind: Mapped[ConversationKind] = mapped_column(
        SQLEnum(ConversationKind, name="conversation_kind", native_enum=False),
        nullable=False
    )

    sender_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        doc="User who scheduled the message"
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Encrypted content envelope, stored as received"
    )

    type: Mapped[MessageType] = mapped_column(
        SQLEnum(MessageType, name="message_type", native_enum=False),
        nullable=False
    )

    media_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    reply_to_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    send_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        doc="When the message becomes due"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<ScheduledMessage(id={self.id}, conversation={self.conversation_key}, send_at={self.send_at})>"


Index("idx_scheduled_messages_send_at_id", ScheduledMessage.send_at, ScheduledMessage.id)
