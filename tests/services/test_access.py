"""
Tests for the SQL membership and block collaborators.
"""
from datetime import datetime

import pytest

from chatcore.models import ConversationMember, ConversationRole, UserBlock
from chatcore.services.access import SqlBlockService, SqlMembershipService


@pytest.fixture
async def team_members(db_session):
    """group:team with an admin, a moderator and a member."""
    db_session.add_all([
        ConversationMember(
            conversation_key="group:team", user_id="user_a",
            role=ConversationRole.ADMIN, joined_at=datetime(2026, 1, 1, 9, 0)
        ),
        ConversationMember(
            conversation_key="group:team", user_id="user_m",
            role=ConversationRole.MODERATOR, joined_at=datetime(2026, 1, 1, 10, 0)
        ),
        ConversationMember(
            conversation_key="group:team", user_id="user_b",
            role=ConversationRole.MEMBER, joined_at=datetime(2026, 1, 1, 11, 0)
        ),
    ])
    await db_session.commit()


@pytest.mark.asyncio
class TestSqlMembershipService:
    """Membership read model."""

    async def test_group_membership(self, db_session, team_members):
        """Test that only listed users are members."""
        service = SqlMembershipService(db_session)

        assert await service.is_member("group:team", "user_b") is True
        assert await service.is_member("group:team", "user_x") is False

    async def test_direct_membership_from_key(self, db_session):
        """Test that direct participants are resolved without any rows."""
        service = SqlMembershipService(db_session)

        assert await service.is_member("direct:user_a:user_b", "user_a") is True
        assert await service.is_member("direct:user_a:user_b", "user_c") is False
        assert await service.members("direct:user_a:user_b") == ["user_a", "user_b"]

    async def test_roles(self, db_session, team_members):
        """Test that admins satisfy moderator checks and members do not."""
        service = SqlMembershipService(db_session)

        assert await service.has_role("group:team", "user_a", ConversationRole.MODERATOR) is True
        assert await service.has_role("group:team", "user_m", ConversationRole.MODERATOR) is True
        assert await service.has_role("group:team", "user_b", ConversationRole.MODERATOR) is False
        assert await service.has_role("direct:user_a:user_b", "user_a", ConversationRole.MODERATOR) is False

    async def test_members_in_join_order(self, db_session, team_members):
        """Test that members are listed oldest first."""
        service = SqlMembershipService(db_session)

        assert await service.members("group:team") == ["user_a", "user_m", "user_b"]


@pytest.mark.asyncio
class TestSqlBlockService:
    """Block list read model."""

    async def test_block_is_directional(self, db_session):
        """Test that a block only stops the blocked user from messaging the blocker."""
        db_session.add(UserBlock(blocker_id="user_b", blocked_id="user_a"))
        await db_session.commit()
        service = SqlBlockService(db_session)

        assert await service.is_blocked("user_a", "user_b") is True
        assert await service.is_blocked("user_b", "user_a") is False
