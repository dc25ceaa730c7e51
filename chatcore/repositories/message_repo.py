"""
Message repository for the durable store.
Handles inserts, range queries, delivery transitions, reactions, deletion and
pinning. Every write commits before returning.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy import delete, insert, select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.core.exceptions import ConflictError, NotFoundError
from chatcore.models.message import (
    DeletionScope,
    DeletionState,
    DeliveryState,
    Message,
    MessageDelivery,
    MessageReaction,
)
from chatcore.models.user_deleted_message import UserDeletedMessage
from chatcore.repositories.base import BaseRepository
from chatcore.schemas.conversation import ConversationScope
from chatcore.schemas.message import DeliveryRecord, MessageSnapshot
from chatcore.utils.datetime_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def _delivery_record(row: MessageDelivery) -> DeliveryRecord:
    return DeliveryRecord(
        state=row.state,
        delivered_at=ensure_utc(row.delivered_at),
        seen_at=ensure_utc(row.seen_at),
    )


def to_snapshot(row: Message) -> MessageSnapshot:
    """Convert a loaded Message row (with deliveries and reactions) to a snapshot."""
    deleted = row.deletion_state == DeletionState.DELETED_FOR_EVERYONE
    return MessageSnapshot(
        message_id=row.id,
        scope=ConversationScope.from_key(row.conversation_key),
        sender_id=row.sender_id,
        content=None if deleted else row.content,
        content_hash=row.content_hash,
        type=row.type,
        media_id=row.media_id,
        reply_to_id=row.reply_to_id,
        sent_at=row.sent_at,
        delivery={d.recipient_id: _delivery_record(d) for d in row.deliveries},
        deletion_state=row.deletion_state,
        deleted_at=row.deleted_at,
        reactions={r.user_id: r.reaction for r in row.reactions},
        is_pinned=row.is_pinned,
        pinned_by=row.pinned_by,
        pinned_at=row.pinned_at,
        expires_at=row.expires_at,
    )


class SqlMessageStore(BaseRepository[Message]):
    """Durable message store backed by SQLAlchemy."""

    def __init__(self, db: AsyncSession):
        """Initialize message store."""
        super().__init__(Message, db)

    def _select_messages(self):
        # Conditional UPDATEs bypass the identity map, so reads always refresh.
        return select(Message).execution_options(populate_existing=True)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def insert(self, message: MessageSnapshot) -> str:
        """
        Insert a new message with its initial delivery records.

        Args:
            message: Snapshot of the message to persist

        Returns:
            The message ID

        Raises:
            ConflictError: If the message ID already exists
            StoreUnavailable: If the store fails
        """
        scope = message.scope
        try:
            await self.db.execute(
                insert(Message).values(
                    id=message.message_id,
                    conversation_key=scope.key,
                    kind=scope.kind,
                    sender_id=message.sender_id,
                    recipient_id=scope.counterpart(message.sender_id) if scope.is_direct else None,
                    target_id=scope.target_id,
                    content=message.content,
                    content_hash=message.content_hash,
                    type=message.type,
                    media_id=message.media_id,
                    reply_to_id=message.reply_to_id,
                    sent_at=message.sent_at,
                    deletion_state=DeletionState.NOT_DELETED,
                    is_pinned=False,
                    expires_at=message.expires_at,
                )
            )
            if message.delivery:
                await self.db.execute(
                    insert(MessageDelivery),
                    [
                        {
                            "message_id": message.message_id,
                            "recipient_id": recipient_id,
                            "state": record.state,
                            "delivered_at": record.delivered_at,
                            "seen_at": record.seen_at,
                            "created_at": message.sent_at,
                        }
                        for recipient_id, record in message.delivery.items()
                    ],
                )
        except IntegrityError as e:
            await self.rollback_quietly()
            raise ConflictError(f"Message {message.message_id} already exists", cause=e) from e
        except SQLAlchemyError as e:
            raise await self._store_failure("insert", e) from e

        await self.commit()
        return message.message_id

    async def find_by_id(self, message_id: str) -> MessageSnapshot:
        """
        Get a single message.

        Raises:
            NotFoundError: If the message does not exist
            StoreUnavailable: If the store fails
        """
        try:
            result = await self.db.execute(
                self._select_messages().where(Message.id == message_id)
            )
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._store_failure("read", e) from e

        if row is None:
            raise NotFoundError(f"Message {message_id} not found")
        return to_snapshot(row)

    async def find_by_ids(self, message_ids: Sequence[str]) -> List[MessageSnapshot]:
        """
        Get many messages. Missing IDs are silently omitted.

        Args:
            message_ids: Message IDs in any order

        Returns:
            Snapshots in no particular order
        """
        if not message_ids:
            return []
        try:
            result = await self.db.execute(
                self._select_messages().where(Message.id.in_(list(message_ids)))
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise await self._store_failure("read", e) from e
        return [to_snapshot(row) for row in rows]

    async def range_before(
        self,
        conversation_key: str,
        before: Optional[datetime],
        limit: int
    ) -> List[MessageSnapshot]:
        """
        Get the newest messages of a conversation sent strictly before a time.

        Args:
            conversation_key: Conversation key
            before: Exclusive upper bound on sent_at, None for the latest page
            limit: Maximum number of messages

        Returns:
            Snapshots in descending (sent_at, id) order
        """
        query = self._select_messages().where(Message.conversation_key == conversation_key)
        if before is not None:
            query = query.where(Message.sent_at < ensure_utc(before))
        query = query.order_by(Message.sent_at.desc(), Message.id.desc()).limit(limit)

        try:
            result = await self.db.execute(query)
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise await self._store_failure("range read", e) from e
        return [to_snapshot(row) for row in rows]

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def update_status(
        self,
        message_id: str,
        recipient_id: str,
        state: DeliveryState,
        at: datetime
    ) -> bool:
        """
        Advance a recipient's delivery state with a compare-and-set.

        The UPDATE only matches rows in a strictly earlier state, so two
        concurrent identical transitions cannot both succeed. A missing
        record is inserted; a concurrent insert for the same recipient makes
        the INSERT fail and the conditional UPDATE is retried once.

        Args:
            message_id: Message ID
            recipient_id: Recipient whose state changes
            state: Target state (delivered or seen)
            at: Transition time

        Returns:
            True if the state changed, False if it was already reached or passed

        Raises:
            NotFoundError: If the message does not exist
            StoreUnavailable: If the store fails
        """
        at = ensure_utc(at)
        values = {"state": state}
        if state == DeliveryState.SEEN:
            values["seen_at"] = at
            values["delivered_at"] = func.coalesce(MessageDelivery.delivered_at, at)
        else:
            values["delivered_at"] = at

        match_record = (
            MessageDelivery.message_id == message_id,
            MessageDelivery.recipient_id == recipient_id,
        )
        conditional = (
            update(MessageDelivery)
            .where(*match_record, MessageDelivery.state.in_(state.earlier_states()))
            .values(**values)
        )

        try:
            for _ in range(2):
                result = await self.db.execute(conditional)
                if result.rowcount:
                    await self.commit()
                    return True

                current = await self.db.execute(
                    select(MessageDelivery.state).where(*match_record)
                )
                if current.scalar_one_or_none() is not None:
                    await self.commit()
                    return False

                if not await self.exists(message_id):
                    await self.db.rollback()
                    raise NotFoundError(f"Message {message_id} not found")

                try:
                    await self.db.execute(
                        insert(MessageDelivery).values(
                            message_id=message_id,
                            recipient_id=recipient_id,
                            state=state,
                            delivered_at=at,
                            seen_at=at if state == DeliveryState.SEEN else None,
                            created_at=at,
                        )
                    )
                except IntegrityError:
                    # Another writer created the record first
                    await self.db.rollback()
                    continue

                await self.commit()
                return True
        except SQLAlchemyError as e:
            raise await self._store_failure("status update", e) from e

        return False

    async def delivery_for(self, message_id: str) -> Dict[str, DeliveryRecord]:
        """
        Get the delivery records of a message.

        Returns:
            Mapping recipient ID -> record, in creation order

        Raises:
            NotFoundError: If the message does not exist
        """
        try:
            if not await self.exists(message_id):
                raise NotFoundError(f"Message {message_id} not found")
            result = await self.db.execute(
                select(MessageDelivery)
                .where(MessageDelivery.message_id == message_id)
                .order_by(MessageDelivery.created_at)
                .execution_options(populate_existing=True)
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise await self._store_failure("delivery read", e) from e
        return {row.recipient_id: _delivery_record(row) for row in rows}

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def set_reaction(self, message_id: str, user_id: str, reaction: Optional[str]) -> None:
        """
        Set a user's reaction, last write wins. None removes it.

        The first reaction time is kept on updates so display order is stable.

        Raises:
            NotFoundError: If the message does not exist
        """
        match_reaction = (
            MessageReaction.message_id == message_id,
            MessageReaction.user_id == user_id,
        )
        now = utc_now()

        try:
            if not await self.exists(message_id):
                raise NotFoundError(f"Message {message_id} not found")

            if reaction is None:
                await self.db.execute(delete(MessageReaction).where(*match_reaction))
            else:
                for _ in range(2):
                    result = await self.db.execute(
                        update(MessageReaction)
                        .where(*match_reaction)
                        .values(reaction=reaction, updated_at=now)
                    )
                    if result.rowcount:
                        break
                    try:
                        await self.db.execute(
                            insert(MessageReaction).values(
                                message_id=message_id,
                                user_id=user_id,
                                reaction=reaction,
                                created_at=now,
                            )
                        )
                        break
                    except IntegrityError:
                        await self.db.rollback()
        except SQLAlchemyError as e:
            raise await self._store_failure("reaction write", e) from e

        await self.commit()

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def mark_deleted(
        self,
        message_id: str,
        scope: DeletionScope,
        user_id: str,
        at: datetime
    ) -> None:
        """
        Delete a message for everyone or for one user.

        Deleting for everyone updates the shared record; deleting for self
        only writes a tombstone for the user. Both are idempotent.

        Args:
            message_id: Message ID
            scope: DeletionScope.EVERYONE or DeletionScope.SELF
            user_id: Acting user
            at: Deletion time

        Raises:
            NotFoundError: If the message does not exist
        """
        at = ensure_utc(at)
        try:
            result = await self.db.execute(
                select(Message.conversation_key).where(Message.id == message_id)
            )
            conversation_key = result.scalar_one_or_none()
            if conversation_key is None:
                await self.db.rollback()
                raise NotFoundError(f"Message {message_id} not found")

            if scope == DeletionScope.EVERYONE:
                await self.db.execute(
                    update(Message)
                    .where(
                        Message.id == message_id,
                        Message.deletion_state != DeletionState.DELETED_FOR_EVERYONE,
                    )
                    .values(deletion_state=DeletionState.DELETED_FOR_EVERYONE, deleted_at=at)
                )
            else:
                try:
                    await self.db.execute(
                        insert(UserDeletedMessage).values(
                            user_id=user_id,
                            message_id=message_id,
                            conversation_key=conversation_key,
                            deleted_at=at,
                        )
                    )
                except IntegrityError:
                    # Already deleted for this user
                    await self.db.rollback()
                    return
        except SQLAlchemyError as e:
            raise await self._store_failure("delete", e) from e

        await self.commit()

    async def hidden_ids(self, user_id: str, conversation_key: str) -> Set[str]:
        """Message IDs the user deleted for themselves in a conversation."""
        try:
            result = await self.db.execute(
                select(UserDeletedMessage.message_id).where(
                    UserDeletedMessage.user_id == user_id,
                    UserDeletedMessage.conversation_key == conversation_key,
                )
            )
            return set(result.scalars().all())
        except SQLAlchemyError as e:
            raise await self._store_failure("tombstone read", e) from e

    # ------------------------------------------------------------------
    # Pinning
    # ------------------------------------------------------------------

    async def set_pinned(
        self,
        message_id: str,
        pinned: bool,
        by: Optional[str],
        at: Optional[datetime]
    ) -> None:
        """
        Pin or unpin a message.

        Raises:
            NotFoundError: If the message does not exist
        """
        values = {
            "is_pinned": pinned,
            "pinned_by": by if pinned else None,
            "pinned_at": ensure_utc(at) if pinned else None,
        }
        try:
            result = await self.db.execute(
                update(Message).where(Message.id == message_id).values(**values)
            )
            if not result.rowcount:
                await self.db.rollback()
                raise NotFoundError(f"Message {message_id} not found")
        except SQLAlchemyError as e:
            raise await self._store_failure("pin update", e) from e

        await self.commit()

    async def pinned(self, conversation_key: str) -> List[MessageSnapshot]:
        """Pinned messages of a conversation, most recently pinned first."""
        try:
            result = await self.db.execute(
                self._select_messages()
                .where(Message.conversation_key == conversation_key, Message.is_pinned.is_(True))
                .order_by(Message.pinned_at.desc(), Message.id.desc())
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise await self._store_failure("pinned read", e) from e
        return [to_snapshot(row) for row in rows]

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def find_expired_before(self, ts: datetime) -> List[MessageSnapshot]:
        """Messages whose expiry is at or before the given time."""
        try:
            result = await self.db.execute(
                self._select_messages().where(
                    Message.expires_at.is_not(None),
                    Message.expires_at <= ensure_utc(ts),
                )
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise await self._store_failure("expiry read", e) from e
        return [to_snapshot(row) for row in rows]

    async def delete_by_ids(self, message_ids: Sequence[str]) -> List[MessageSnapshot]:
        """
        Physically delete messages and everything that references them.

        Args:
            message_ids: Message IDs to delete

        Returns:
            Snapshots of the deleted messages (unknown IDs are skipped)
        """
        removed = await self.find_by_ids(message_ids)
        if not removed:
            return []

        ids = [snapshot.message_id for snapshot in removed]
        try:
            # Child rows first, not every backend enforces ON DELETE CASCADE
            await self.db.execute(delete(MessageDelivery).where(MessageDelivery.message_id.in_(ids)))
            await self.db.execute(delete(MessageReaction).where(MessageReaction.message_id.in_(ids)))
            await self.db.execute(delete(UserDeletedMessage).where(UserDeletedMessage.message_id.in_(ids)))
            await self.db.execute(delete(Message).where(Message.id.in_(ids)))
        except SQLAlchemyError as e:
            raise await self._store_failure("bulk delete", e) from e

        await self.commit()
        logger.info(f"Deleted {len(ids)} messages from the durable store")
        return removed

    async def delete_expired_before(self, ts: datetime) -> int:
        """
        Delete every message that expired at or before the given time.

        Returns:
            Number of deleted messages
        """
        expired = await self.find_expired_before(ts)
        removed = await self.delete_by_ids([snapshot.message_id for snapshot in expired])
        return len(removed)
