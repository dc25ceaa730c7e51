"""
WebSocket manager for real-time events.
Tracks each user's active Socket.IO sessions and emits events to them.
"""
import logging
from typing import Any, Dict, Optional, Set

import socketio

from chatcore.config import settings

logger = logging.getLogger(__name__)


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


class ConnectionManager:
    """
    WebSocket connection manager using Socket.IO.

    Every authenticated session joins its user's room, so emitting to the
    room reaches all of the user's active sessions.
    """

    def __init__(self, sio: Optional[socketio.AsyncServer] = None):
        """
        Initialize the connection manager.

        Args:
            sio: Socket.IO server, created from settings when omitted
        """
        if sio is None:
            cors_origins = settings.get_allowed_origins_list() or "*"
            sio = socketio.AsyncServer(
                async_mode="asgi",
                cors_allowed_origins=cors_origins,
                # Library loggers emit every packet; application logging covers the events we care about
                logger=False,
                engineio_logger=False,
                ping_timeout=settings.ws_heartbeat_interval,
                ping_interval=settings.ws_heartbeat_interval // 2,
            )
        self.sio = sio

        # Track connections: {sid: user_id}
        self.connections: Dict[str, str] = {}

        # Track user sessions: {user_id: set of sids}
        self.user_sessions: Dict[str, Set[str]] = {}

        self._setup_handlers()

    def _setup_handlers(self):
        """Setup Socket.IO event handlers."""

        @self.sio.event
        async def connect(sid, environ, auth):
            """Authenticate the handshake token and register the session."""
            token = auth.get("token") if auth else None
            if not token:
                logger.warning(f"Connection rejected - no token: {sid}")
                return False

            from chatcore.core.security import SecurityException, user_id_from_token

            try:
                user_id = user_id_from_token(token)
            except SecurityException as e:
                logger.warning(f"Connection rejected - {e.detail}: {sid}")
                return False

            await self.register(sid, user_id)
            return True

        @self.sio.event
        async def disconnect(sid):
            """Handle client disconnection."""
            await self.unregister(sid)

    async def register(self, sid: str, user_id: str) -> None:
        """Track a session and join it to the user's room."""
        self.connections[sid] = user_id
        self.user_sessions.setdefault(user_id, set()).add(sid)
        await self.sio.enter_room(sid, user_room(user_id))
        logger.info(f"Client connected: {sid} (user: {user_id})")

    async def unregister(self, sid: str) -> None:
        """Forget a session."""
        user_id = self.connections.pop(sid, None)
        if user_id is None:
            return

        sessions = self.user_sessions.get(user_id)
        if sessions is not None:
            sessions.discard(sid)
            if not sessions:
                del self.user_sessions[user_id]
        logger.info(f"Client disconnected: {sid} (user: {user_id})")

    def active_sessions_for(self, user_id: str) -> Set[str]:
        """Session IDs currently connected for a user."""
        return set(self.user_sessions.get(user_id, ()))

    async def emit_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        """
        Emit an event to every session of a user.

        Raises:
            Whatever the Socket.IO server raises on transport failure
        """
        await self.sio.emit(event, payload, room=user_room(user_id))

    def get_asgi_app(self, fastapi_app):
        """
        Get the ASGI app for Socket.IO wrapping FastAPI.

        Socket.IO wraps FastAPI, not the other way around; clients connect to
        /socket.io/ and every other path is routed to FastAPI.

        Args:
            fastapi_app: FastAPI application instance

        Returns:
            Socket.IO ASGI app with FastAPI wrapped inside
        """
        return socketio.ASGIApp(self.sio, fastapi_app)


# Global connection manager instance
connection_manager = ConnectionManager()
