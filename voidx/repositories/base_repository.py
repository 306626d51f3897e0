from datetime import datetime, timezone
from typing import Any, Dict, Generic, Iterable, List, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.core.exceptions import ForbiddenError, NotFoundError
from voidx.utils.logging import get_logger

ModelType = TypeVar("ModelType")

LOGGER = get_logger(__name__)


class BaseRepository(Generic[ModelType]):
    """Common CRUD and account-scoped access for one SQLAlchemy model.

    Every write commits immediately so that progress written by long-running
    jobs (indexing, workflow runs) is visible to readers in other sessions.
    """

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        """Initialize the repository.

        Args:
            session: SQLAlchemy async session
            model: The SQLAlchemy model class this repository manages
        """
        self.session = session
        self.model = model
        self.logger = LOGGER

    def _fail(self, action: str, error: SQLAlchemyError) -> None:
        self.logger.error(
            f"Error {action} {self.model.__name__}: {str(error)}",
            exc_info=True,
        )

    async def get_by_id(self, id: UUID) -> Optional[ModelType]:
        """Get a record by its ID, or None."""
        try:
            result = await self.session.execute(select(self.model).where(self.model.id == id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._fail(f"retrieving {id} of", e)
            raise

    async def get_owned(self, id: UUID, account_id: UUID) -> ModelType:
        """Get a record that must exist and belong to ``account_id``.

        Raises:
            NotFoundError: If the record does not exist
            ForbiddenError: If the record belongs to another account
        """
        instance = await self.get_by_id(id)
        if instance is None:
            raise NotFoundError(f"{self.model.__name__} {id} does not exist")
        if instance.account_id != account_id:
            raise ForbiddenError(f"Account has no access to {self.model.__name__} {id}")
        return instance

    async def get_by_ids(self, ids: Iterable[UUID]) -> List[ModelType]:
        """Get all records whose ID is in ``ids`` (order not guaranteed)."""
        ids = list(ids)
        if not ids:
            return []
        try:
            result = await self.session.execute(select(self.model).where(self.model.id.in_(ids)))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._fail("retrieving batch of", e)
            raise

    async def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[ModelType]:
        """Get records with optional equality filters and pagination."""
        try:
            query = select(self.model)
            for field, value in (filters or {}).items():
                if hasattr(self.model, field):
                    query = query.where(getattr(self.model, field) == value)
            result = await self.session.execute(query.offset(skip).limit(limit))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._fail("listing", e)
            raise

    async def create(self, **kwargs) -> ModelType:
        """Insert a new record and commit."""
        try:
            instance = self.model(**kwargs)
            self.session.add(instance)
            await self.session.flush()
            await self.session.commit()
            return instance
        except SQLAlchemyError as e:
            self._fail("creating", e)
            await self.session.rollback()
            raise

    async def update(self, id: UUID, **kwargs) -> Optional[ModelType]:
        """Set attributes on an existing record and commit.

        Returns:
            The updated record, or None when it does not exist
        """
        try:
            instance = await self.get_by_id(id)
            if not instance:
                return None
            for key, value in kwargs.items():
                if hasattr(instance, key):
                    setattr(instance, key, value)
            if hasattr(instance, "updated_at"):
                instance.updated_at = datetime.now(timezone.utc)
            await self.session.flush()
            await self.session.commit()
            return instance
        except SQLAlchemyError as e:
            self._fail(f"updating {id} of", e)
            await self.session.rollback()
            raise

    async def update_many(self, ids: Iterable[UUID], **values) -> int:
        """Apply the same column values to every record in ``ids``."""
        ids = list(ids)
        if not ids:
            return 0
        try:
            result = await self.session.execute(
                update(self.model)
                .where(self.model.id.in_(ids))
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            await self.session.commit()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            self._fail("bulk updating", e)
            await self.session.rollback()
            raise

    async def delete(self, id: UUID) -> bool:
        """Delete a record by ID; False when it does not exist."""
        try:
            instance = await self.get_by_id(id)
            if not instance:
                return False
            await self.session.delete(instance)
            await self.session.flush()
            await self.session.commit()
            return True
        except SQLAlchemyError as e:
            self._fail(f"deleting {id} of", e)
            await self.session.rollback()
            raise

    async def delete_where(self, **filters) -> int:
        """Delete every record matching the equality filters."""
        try:
            statement = delete(self.model)
            for field, value in filters.items():
                statement = statement.where(getattr(self.model, field) == value)
            result = await self.session.execute(statement.execution_options(synchronize_session="fetch"))
            await self.session.commit()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            self._fail("bulk deleting", e)
            await self.session.rollback()
            raise

    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records matching equality filters."""
        try:
            query = select(func.count()).select_from(self.model)
            for field, value in (filters or {}).items():
                if hasattr(self.model, field):
                    query = query.where(getattr(self.model, field) == value)
            result = await self.session.execute(query)
            return result.scalar_one()
        except SQLAlchemyError as e:
            self._fail("counting", e)
            raise
