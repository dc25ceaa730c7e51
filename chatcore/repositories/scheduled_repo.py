"""
Scheduled message repository.
Holds messages accepted for a later send until the scheduled-send job picks
them up. Every write commits before returning.
"""
from datetime import datetime
from typing import List

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.core.exceptions import ConflictError, NotFoundError
from chatcore.models.scheduled_message import ScheduledMessage
from chatcore.repositories.base import BaseRepository
from chatcore.schemas.conversation import ConversationScope
from chatcore.schemas.message import ScheduledMessageSnapshot
from chatcore.utils.datetime_utils import ensure_utc


def to_scheduled_snapshot(row: ScheduledMessage) -> ScheduledMessageSnapshot:
    return ScheduledMessageSnapshot(
        scheduled_id=row.id,
        scope=ConversationScope.from_key(row.conversation_key),
        sender_id=row.sender_id,
        content=row.content,
        type=row.type,
        media_id=row.media_id,
        reply_to_id=row.reply_to_id,
        expires_at=row.expires_at,
        send_at=row.send_at,
        created_at=row.created_at,
    )


class SqlScheduledMessageStore(BaseRepository[ScheduledMessage]):
    """Durable queue of scheduled messages backed by SQLAlchemy."""

    def __init__(self, db: AsyncSession):
        """Initialize scheduled message store."""
        super().__init__(ScheduledMessage, db)

    async def insert(self, scheduled: ScheduledMessageSnapshot) -> str:
        """
        Persist a scheduled message.

        Returns:
            The scheduled message ID

        Raises:
            ConflictError: If the ID already exists
            StoreUnavailable: If the store fails
        """
        try:
            await self.db.execute(
                insert(ScheduledMessage).values(
                    id=scheduled.scheduled_id,
                    conversation_key=scheduled.conversation_key,
                    kind=scheduled.scope.kind,
                    sender_id=scheduled.sender_id,
                    content=scheduled.content,
                    type=scheduled.type,
                    media_id=scheduled.media_id,
                    reply_to_id=scheduled.reply_to_id,
                    expires_at=scheduled.expires_at,
                    send_at=scheduled.send_at,
                    created_at=scheduled.created_at,
                )
            )
        except IntegrityError as e:
            await self.rollback_quietly()
            raise ConflictError(f"Scheduled message {scheduled.scheduled_id} already exists", cause=e) from e
        except SQLAlchemyError as e:
            raise await self._store_failure("scheduled insert", e) from e

        await self.commit()
        return scheduled.scheduled_id

    async def find_by_id(self, scheduled_id: str) -> ScheduledMessageSnapshot:
        """
        Get one scheduled message.

        Raises:
            NotFoundError: If it does not exist (or was already sent)
        """
        try:
            result = await self.db.execute(
                select(ScheduledMessage).where(ScheduledMessage.id == scheduled_id)
            )
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._store_failure("scheduled read", e) from e

        if row is None:
            raise NotFoundError(f"Scheduled message {scheduled_id} not found")
        return to_scheduled_snapshot(row)

    async def list_for_sender(self, sender_id: str) -> List[ScheduledMessageSnapshot]:
        """Pending scheduled messages of a user, soonest first."""
        try:
            result = await self.db.execute(
                select(ScheduledMessage)
                .where(ScheduledMessage.sender_id == sender_id)
                .order_by(ScheduledMessage.send_at.asc(), ScheduledMessage.id.asc())
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise await self._store_failure("scheduled read", e) from e
        return [to_scheduled_snapshot(row) for row in rows]

    async def find_due(self, now: datetime, limit: int) -> List[ScheduledMessageSnapshot]:
        """
        Scheduled messages whose send time has passed, oldest first.

        Args:
            now: Reference time
            limit: Maximum number of rows
        """
        try:
            result = await self.db.execute(
                select(ScheduledMessage)
                .where(ScheduledMessage.send_at <= ensure_utc(now))
                .order_by(ScheduledMessage.send_at.asc(), ScheduledMessage.id.asc())
                .limit(limit)
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise await self._store_failure("due read", e) from e
        return [to_scheduled_snapshot(row) for row in rows]

    async def delete(self, scheduled_id: str) -> bool:
        """
        Remove a scheduled message.

        Returns:
            True if a row was removed
        """
        try:
            result = await self.db.execute(
                delete(ScheduledMessage).where(ScheduledMessage.id == scheduled_id)
            )
        except SQLAlchemyError as e:
            raise await self._store_failure("scheduled delete", e) from e

        await self.commit()
        return result.rowcount > 0
