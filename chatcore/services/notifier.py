"""
Real-time notifier.

Best-effort, at-most-once delivery of events to a recipient's active
sessions. Nothing is queued for offline recipients; clients catch up by
fetching.
"""
import logging
from typing import Any, Dict, Iterable

from chatcore.core.exceptions import NotifyUnavailable
from chatcore.core.websocket import ConnectionManager

logger = logging.getLogger(__name__)


class Notifier:
    """Emits events through the Socket.IO connection manager."""

    def __init__(self, connection_manager: ConnectionManager):
        """
        Initialize notifier.

        Args:
            connection_manager: Session registry and transport
        """
        self.connections = connection_manager

    async def notify(self, recipient_id: str, event_type: str, payload: Dict[str, Any]) -> bool:
        """
        Deliver an event to every active session of a recipient.

        Args:
            recipient_id: User to notify
            event_type: Socket.IO event name
            payload: Event payload (metadata only)

        Returns:
            True if emitted, False if the recipient has no active session

        Raises:
            NotifyUnavailable: If the transport fails
        """
        if not self.connections.active_sessions_for(recipient_id):
            logger.debug(f"Dropped {event_type} for offline user {recipient_id}")
            return False

        try:
            await self.connections.emit_to_user(recipient_id, event_type, payload)
        except Exception as e:
            raise NotifyUnavailable(f"Failed to emit {event_type} to {recipient_id}", cause=e) from e
        return True

    async def notify_many(self, recipient_ids: Iterable[str], event_type: str, payload: Dict[str, Any]) -> int:
        """
        Fan an event out to several recipients.

        Per-recipient failures are logged and do not stop the fan-out.

        Returns:
            Number of recipients the event was emitted to
        """
        delivered = 0
        for recipient_id in recipient_ids:
            try:
                if await self.notify(recipient_id, event_type, payload):
                    delivered += 1
            except NotifyUnavailable as e:
                logger.warning(f"{e.message}: {e.cause}")
        return delivered
