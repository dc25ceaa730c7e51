"""
Unit tests for DeliveryTracker.
"""
import pytest

from chatcore.models.message import DeliveryState
from chatcore.services.delivery_tracker import STATUS_EVENT, DeliveryTracker
from chatcore.utils.datetime_utils import from_epoch_millis


@pytest.mark.asyncio
class TestDeliveryTracker:
    """Monotonic transitions and sender notification."""

    async def test_delivered_then_seen(self, store, notifier, connections, direct_scope, make_snapshot):
        """Test the full sent -> delivered -> seen progression."""
        tracker = DeliveryTracker(store, notifier)
        message = make_snapshot(direct_scope, sender_id="user_a")
        await store.insert(message)

        assert await tracker.get_state(message.message_id, "user_b") == DeliveryState.SENT
        assert await tracker.record_delivered(message, "user_b", from_epoch_millis(2000)) is True
        assert await tracker.get_state(message.message_id, "user_b") == DeliveryState.DELIVERED
        assert await tracker.record_seen(message, "user_b", from_epoch_millis(3000)) is True
        assert await tracker.get_state(message.message_id, "user_b") == DeliveryState.SEEN

        statuses = [p["status"] for p in connections.events_for("user_a", STATUS_EVENT)]
        assert statuses == ["delivered", "seen"]

    async def test_transitions_are_idempotent(self, store, notifier, connections, direct_scope, make_snapshot):
        """Test that a repeated or backwards transition changes nothing and notifies nobody."""
        tracker = DeliveryTracker(store, notifier)
        message = make_snapshot(direct_scope, sender_id="user_a")
        await store.insert(message)

        assert await tracker.record_seen(message, "user_b", from_epoch_millis(2000)) is True
        assert await tracker.record_seen(message, "user_b", from_epoch_millis(3000)) is False
        assert await tracker.record_delivered(message, "user_b", from_epoch_millis(4000)) is False

        assert len(connections.events_for("user_a", STATUS_EVENT)) == 1

    async def test_notification_payload(self, store, notifier, connections, direct_scope, make_snapshot):
        """Test that the sender learns who received the message and when."""
        tracker = DeliveryTracker(store, notifier)
        message = make_snapshot(direct_scope, sender_id="user_a")
        await store.insert(message)

        await tracker.record_delivered(message, "user_b", from_epoch_millis(1000))

        assert connections.events_for("user_a", STATUS_EVENT) == [{
            "message_id": message.message_id,
            "conversation_key": direct_scope.key,
            "recipient_id": "user_b",
            "status": "delivered",
            "at": 1000,
        }]

    async def test_notify_failure_does_not_undo_transition(
        self, store, notifier, connections, direct_scope, make_snapshot
    ):
        """Test that a transport failure is logged and the transition stands."""
        tracker = DeliveryTracker(store, notifier)
        message = make_snapshot(direct_scope, sender_id="user_a")
        await store.insert(message)
        connections.fail = True

        assert await tracker.record_delivered(message, "user_b", from_epoch_millis(1000)) is True
        assert await tracker.get_state(message.message_id, "user_b") == DeliveryState.DELIVERED
