"""
UserBlock model for user blocking functionality.

Allows users to block other users from sending them direct messages.
"""
from datetime import datetime

from sqlalchemy import Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.models.base import Base


class UserBlock(Base):
    """
    UserBlock model - tracks which users have blocked each other.

    The blocked user cannot send direct messages to the blocker.
    """

    __tablename__ = "user_blocks"

    blocker_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        doc="User who is blocking"
    )

    blocked_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        doc="User who is being blocked"
    )

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
        doc="When the block was created"
    )

    def __repr__(self) -> str:
        return f"<UserBlock(blocker_id={self.blocker_id}, blocked_id={self.blocked_id})>"


Index("idx_user_blocks_blocked", UserBlock.blocked_id)
