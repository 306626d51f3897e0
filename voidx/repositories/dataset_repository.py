import uuid
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.database.models import Dataset, DatasetQuery
from voidx.repositories.base_repository import BaseRepository


class DatasetRepository(BaseRepository[Dataset]):
    """Repository for knowledge-base datasets."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Dataset)

    async def get_owned_ids(self, account_id: uuid.UUID, dataset_ids: Iterable[uuid.UUID]) -> List[uuid.UUID]:
        """Return the subset of ``dataset_ids`` owned by ``account_id``, in input order."""
        requested = list(dict.fromkeys(dataset_ids))
        if not requested:
            return []
        try:
            result = await self.session.execute(
                select(Dataset.id).where(Dataset.id.in_(requested), Dataset.account_id == account_id)
            )
            owned = set(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking dataset ownership: {str(e)}", exc_info=True)
            raise
        return [dataset_id for dataset_id in requested if dataset_id in owned]


class DatasetQueryRepository(BaseRepository[DatasetQuery]):
    """Repository for dataset query log rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, DatasetQuery)

    async def record(
        self,
        dataset_id: uuid.UUID,
        query: str,
        source: str,
        created_by: uuid.UUID,
        source_app_id: Optional[uuid.UUID] = None,
    ) -> DatasetQuery:
        return await self.create(
            dataset_id=dataset_id,
            query=query,
            source=source,
            created_by=created_by,
            source_app_id=source_app_id,
        )

    async def get_recent(self, dataset_id: uuid.UUID, limit: int = 10) -> List[DatasetQuery]:
        """Latest queries for a dataset, newest first."""
        result = await self.session.execute(
            select(DatasetQuery)
            .where(DatasetQuery.dataset_id == dataset_id)
            .order_by(DatasetQuery.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
