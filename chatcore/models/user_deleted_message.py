"""
UserDeletedMessage model - tracks per-user message deletions.

Implements "Delete for Me": the shared message record is never touched,
the message is only hidden from this user's fetches.
"""
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatcore.models.base import Base

if TYPE_CHECKING:
    from chatcore.models.message import Message


class UserDeletedMessage(Base):
    """
    Tombstone for a message deleted "for me" by an individual user.

    When fetching messages, exclude any messages in this table for the
    requesting user.
    """

    __tablename__ = "user_deleted_messages"

    user_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        doc="User who deleted the message for themselves"
    )

    message_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True,
        doc="Message that was deleted for this user"
    )

    conversation_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Conversation of the message, lets fetches load one conversation's tombstones"
    )

    deleted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="When the user deleted this message"
    )

    message: Mapped["Message"] = relationship(back_populates="deleted_by_users")

    def __repr__(self) -> str:
        return f"<UserDeletedMessage(user_id={self.user_id}, message_id={self.message_id})>"


Index("idx_user_deleted_messages_user_conversation", UserDeletedMessage.user_id, UserDeletedMessage.conversation_key)
