"""
Base repository with common database operations.
SQL-backed repositories extend this class for session handling and error mapping.
"""
import logging
from typing import Generic, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.core.exceptions import StoreUnavailable
from chatcore.models.base import Base

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository with common read operations.

    Writes are committed by the concrete repository; driver errors surface as
    StoreUnavailable after the session is rolled back.
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Async database session
        """
        self.model = model
        self.db = db

    async def exists(self, id: str) -> bool:
        """
        Check if a record exists.

        Args:
            id: Record ID

        Returns:
            True if exists, False otherwise
        """
        result = await self.db.execute(
            select(func.count()).select_from(self.model).where(self.model.id == id)
        )
        return result.scalar() > 0

    async def commit(self) -> None:
        """
        Commit the current unit of work.

        Raises:
            StoreUnavailable: If the commit fails
        """
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.rollback_quietly()
            raise StoreUnavailable("Durable store commit failed", cause=e) from e

    async def rollback_quietly(self) -> None:
        """Roll back after a failed statement, logging rollback errors."""
        try:
            await self.db.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed")

    async def _store_failure(self, operation: str, error: SQLAlchemyError) -> StoreUnavailable:
        await self.rollback_quietly()
        logger.error(f"Durable store {operation} failed: {error}")
        return StoreUnavailable(f"Durable store {operation} failed", cause=error)
