"""
ConversationMember model.

Membership and roles for group and channel conversations. Groups and
communities are owned by other services; this table is the local read model
the membership collaborator answers from. Direct conversations have no rows
here, their two participants are encoded in the conversation key.
"""
import enum
from datetime import datetime

from sqlalchemy import Index, String, Enum as SQLEnum, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.models.base import Base


class ConversationRole(str, enum.Enum):
    """Enum for conversation member roles."""
    ADMIN = "admin"
    MODERATOR = "moderator"
    MEMBER = "member"

    def satisfies(self, required: "ConversationRole") -> bool:
        """Admins hold every moderator privilege."""
        if self == required:
            return True
        return self == ConversationRole.ADMIN and required == ConversationRole.MODERATOR


class ConversationMember(Base):
    """
    Member of a group or channel conversation.
    """

    __tablename__ = "conversation_members"

    conversation_key: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        doc="Conversation key (group:<id> or channel:<id>)"
    )

    user_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        doc="User ID"
    )

    role: Mapped[ConversationRole] = mapped_column(
        SQLEnum(ConversationRole, name="conversation_role", native_enum=False),
        default=ConversationRole.MEMBER,
        nullable=False,
        doc="Member role: 'admin', 'moderator' or 'member'"
    )

    joined_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
        doc="When the user joined the conversation"
    )

    def __repr__(self) -> str:
        return (
            f"<ConversationMember(conversation_key={self.conversation_key}, "
            f"user_id={self.user_id}, role={self.role})>"
        )


Index("idx_conversation_members_user", ConversationMember.user_id)
