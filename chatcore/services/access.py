"""
Access collaborators: conversation membership, roles and user blocks.

Membership of groups and channels is owned by other services; the SQL
implementations answer from local read-model tables. Direct conversations
are resolved from the conversation key alone.
"""
from typing import List, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.models.conversation import ConversationMember, ConversationRole
from chatcore.models.user_block import UserBlock
from chatcore.schemas.conversation import ConversationScope


class MembershipService(Protocol):
    """Answers who belongs to a conversation and with which role."""

    async def is_member(self, conversation_key: str, user_id: str) -> bool: ...

    async def has_role(self, conversation_key: str, user_id: str, role: ConversationRole) -> bool: ...

    async def members(self, conversation_key: str) -> List[str]: ...


class BlockService(Protocol):
    """Answers whether a recipient has blocked a sender."""

    async def is_blocked(self, sender_id: str, recipient_id: str) -> bool: ...


class MediaRegistry(Protocol):
    """Answers whether an uploaded media object exists for an owner."""

    async def exists(self, media_id: str, owner_id: str) -> bool: ...


class SqlMembershipService:
    """Membership backed by the conversation_members table."""

    def __init__(self, db: AsyncSession):
        """
        Initialize membership service.

        Args:
            db: Database session
        """
        self.db = db

    async def _role_of(self, conversation_key: str, user_id: str):
        result = await self.db.execute(
            select(ConversationMember.role).where(
                ConversationMember.conversation_key == conversation_key,
                ConversationMember.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    async def is_member(self, conversation_key: str, user_id: str) -> bool:
        """
        Check if a user belongs to a conversation.

        Args:
            conversation_key: Conversation key
            user_id: User ID

        Returns:
            True if user is a participant or member
        """
        scope = ConversationScope.from_key(conversation_key)
        if scope.is_direct:
            return scope.involves(user_id)
        return await self._role_of(conversation_key, user_id) is not None

    async def has_role(self, conversation_key: str, user_id: str, role: ConversationRole) -> bool:
        """
        Check if a member holds a role (admins satisfy moderator checks).

        Direct conversations have no roles.
        """
        scope = ConversationScope.from_key(conversation_key)
        if scope.is_direct:
            return False
        current = await self._role_of(conversation_key, user_id)
        return current is not None and current.satisfies(role)

    async def members(self, conversation_key: str) -> List[str]:
        """All user IDs of a conversation."""
        scope = ConversationScope.from_key(conversation_key)
        if scope.is_direct:
            return list(scope.participants)
        result = await self.db.execute(
            select(ConversationMember.user_id)
            .where(ConversationMember.conversation_key == conversation_key)
            .order_by(ConversationMember.joined_at)
        )
        return list(result.scalars().all())


class SqlBlockService:
    """Blocks backed by the user_blocks table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_blocked(self, sender_id: str, recipient_id: str) -> bool:
        """
        Check if sender is blocked by recipient.

        Args:
            sender_id: Sender user ID
            recipient_id: Recipient user ID

        Returns:
            True if blocked
        """
        result = await self.db.execute(
            select(UserBlock).where(
                UserBlock.blocker_id == recipient_id,
                UserBlock.blocked_id == sender_id
            )
        )
        return result.scalar_one_or_none() is not None
