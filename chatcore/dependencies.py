"""
Dependency injection for FastAPI routes.
Provides reusable dependencies for authentication and the message orchestrator.
"""
from typing import Optional
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.core.cache import cache
from chatcore.core.database import get_db
from chatcore.core.security import extract_token_from_header, user_id_from_token
from chatcore.core.websocket import connection_manager
from chatcore.services.orchestrator import MessageOrchestrator, build_orchestrator


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    Dependency to get the current authenticated user ID.

    Tokens are validated locally; the ``sub`` claim is the user ID.

    Args:
        authorization: Authorization header containing a Bearer token

    Returns:
        The authenticated user ID

    Raises:
        SecurityException: 401 if token is missing or invalid

    Example:
        ```python
        @router.get("/protected")
        async def protected_route(user_id: str = Depends(get_current_user)):
            return {"user": user_id}
        ```
    """
    token = extract_token_from_header(authorization)
    return user_id_from_token(token)


async def get_orchestrator(db: AsyncSession = Depends(get_db)) -> MessageOrchestrator:
    """
    Dependency providing a message orchestrator bound to the request session.

    Args:
        db: Database session

    Returns:
        MessageOrchestrator wired to the shared Redis and Socket.IO managers
    """
    return build_orchestrator(db, redis_cache=cache, connections=connection_manager)
