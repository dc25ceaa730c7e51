"""
Unit tests for the real-time notifier and the Socket.IO connection manager.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatcore.core.exceptions import NotifyUnavailable
from chatcore.core.websocket import ConnectionManager, user_room
from chatcore.services.notifier import Notifier


@pytest.mark.asyncio
class TestNotifier:
    """At-most-once delivery to active sessions."""

    async def test_offline_recipient_is_dropped(self, notifier, connections):
        """Test that nothing is emitted or queued for an offline user."""
        assert await notifier.notify("user_offline", "new_message", {"message_id": "msg_1"}) is False
        assert connections.emitted == []

    async def test_online_recipient(self, notifier, connections):
        """Test that an online user receives the event."""
        assert await notifier.notify("user_b", "new_message", {"message_id": "msg_1"}) is True
        assert connections.events_for("user_b", "new_message") == [{"message_id": "msg_1"}]

    async def test_transport_failure_raises(self, notifier, connections):
        """Test that emit failures surface as NotifyUnavailable."""
        connections.fail = True

        with pytest.raises(NotifyUnavailable):
            await notifier.notify("user_b", "new_message", {})

    async def test_notify_many_counts_deliveries(self, notifier, connections):
        """Test that fan-out skips offline users and counts emits."""
        delivered = await notifier.notify_many(["user_b", "user_offline", "user_c"], "typing", {})

        assert delivered == 2

    async def test_notify_many_swallows_transport_failures(self, notifier, connections):
        """Test that one failing emit does not abort the fan-out."""
        connections.fail = True

        assert await notifier.notify_many(["user_b", "user_c"], "typing", {}) == 0


@pytest.mark.asyncio
class TestConnectionManager:
    """Session tracking on top of Socket.IO rooms."""

    def _manager(self):
        sio = MagicMock()
        sio.event = lambda handler: handler
        sio.enter_room = AsyncMock()
        sio.emit = AsyncMock()
        return ConnectionManager(sio=sio), sio

    async def test_register_and_unregister(self):
        """Test that sessions are tracked per user across multiple devices."""
        manager, sio = self._manager()

        await manager.register("sid-1", "user_a")
        await manager.register("sid-2", "user_a")

        assert manager.active_sessions_for("user_a") == {"sid-1", "sid-2"}
        sio.enter_room.assert_any_await("sid-1", user_room("user_a"))

        await manager.unregister("sid-1")
        assert manager.active_sessions_for("user_a") == {"sid-2"}

        await manager.unregister("sid-2")
        assert manager.active_sessions_for("user_a") == set()
        assert "user_a" not in manager.user_sessions

    async def test_emit_targets_user_room(self):
        """Test that events go to the user's room so every session receives them."""
        manager, sio = self._manager()

        await manager.emit_to_user("user_b", "new_message", {"message_id": "msg_1"})

        sio.emit.assert_awaited_once_with("new_message", {"message_id": "msg_1"}, room="user:user_b")

    async def test_notifier_over_manager(self):
        """Test the notifier end to end over a mocked Socket.IO server."""
        manager, sio = self._manager()
        await manager.register("sid-1", "user_b")

        assert await Notifier(manager).notify("user_b", "typing", {"is_typing": True}) is True
        sio.emit.assert_awaited_once()
