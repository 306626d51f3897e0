import uuid
from typing import Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.database.models import KeywordTable
from voidx.repositories.base_repository import BaseRepository


class KeywordTableRepository(BaseRepository[KeywordTable]):
    """Repository for per-dataset keyword tables."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, KeywordTable)

    async def get_by_dataset(self, dataset_id: uuid.UUID) -> KeywordTable | None:
        result = await self.session.execute(
            select(KeywordTable).where(KeywordTable.dataset_id == dataset_id)
        )
        return result.scalar_one_or_none()

    async def get_by_datasets(self, dataset_ids: Iterable[uuid.UUID]) -> List[KeywordTable]:
        dataset_ids = list(dataset_ids)
        if not dataset_ids:
            return []
        result = await self.session.execute(
            select(KeywordTable).where(KeywordTable.dataset_id.in_(dataset_ids))
        )
        tables = {table.dataset_id: table for table in result.scalars().all()}
        # Keep the caller's dataset order so postings concatenate deterministically
        return [tables[dataset_id] for dataset_id in dataset_ids if dataset_id in tables]

    async def replace_table(self, table: KeywordTable, keyword_table: Dict[str, List[str]]) -> KeywordTable:
        """Persist the whole mapping as a row replace."""
        return await self.update(table.id, keyword_table=keyword_table)
