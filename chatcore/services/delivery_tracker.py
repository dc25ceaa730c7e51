"""
Delivery tracker.

Applies monotonic per-recipient status transitions (sent -> delivered ->
seen) and tells the sender when one happens.
"""
import logging
from datetime import datetime
from typing import Optional

from chatcore.core.exceptions import NotifyUnavailable
from chatcore.models.message import DeliveryState
from chatcore.repositories.interfaces import MessageStore
from chatcore.schemas.message import MessageSnapshot
from chatcore.services.notifier import Notifier
from chatcore.utils.datetime_utils import to_epoch_millis, utc_now

logger = logging.getLogger(__name__)

STATUS_EVENT = "message_status"


class DeliveryTracker:
    """Records delivery and seen transitions in the durable store."""

    def __init__(self, store: MessageStore, notifier: Notifier):
        """
        Initialize tracker.

        Args:
            store: Durable store holding delivery records
            notifier: Used to inform senders about transitions
        """
        self.store = store
        self.notifier = notifier

    async def record_delivered(
        self,
        message: MessageSnapshot,
        recipient_id: str,
        at: Optional[datetime] = None
    ) -> bool:
        """
        Record that a recipient received a message.

        Returns:
            True if the state changed, False if already delivered or seen
        """
        return await self._transition(message, recipient_id, DeliveryState.DELIVERED, at)

    async def record_seen(
        self,
        message: MessageSnapshot,
        recipient_id: str,
        at: Optional[datetime] = None
    ) -> bool:
        """
        Record that a recipient read a message. Implies delivered.

        Returns:
            True if the state changed, False if already seen
        """
        return await self._transition(message, recipient_id, DeliveryState.SEEN, at)

    async def get_state(self, message_id: str, recipient_id: str) -> DeliveryState:
        """Current state of one recipient (sent when no record exists)."""
        records = await self.store.delivery_for(message_id)
        record = records.get(recipient_id)
        return record.state if record else DeliveryState.SENT

    async def _transition(
        self,
        message: MessageSnapshot,
        recipient_id: str,
        state: DeliveryState,
        at: Optional[datetime]
    ) -> bool:
        at = at or utc_now()
        changed = await self.store.update_status(message.message_id, recipient_id, state, at)
        if not changed:
            return False

        payload = {
            "message_id": message.message_id,
            "conversation_key": message.conversation_key,
            "recipient_id": recipient_id,
            "status": state.value,
            "at": to_epoch_millis(at),
        }
        try:
            await self.notifier.notify(message.sender_id, STATUS_EVENT, payload)
        except NotifyUnavailable as e:
            logger.warning(f"Status notification for {message.message_id} failed: {e.cause}")
        return True
