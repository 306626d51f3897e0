import uuid
from typing import Dict, Iterable, List

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.database.models import Segment
from voidx.repositories.base_repository import BaseRepository


class SegmentRepository(BaseRepository[Segment]):
    """Repository for document segments."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Segment)

    async def get_by_document(self, document_id: uuid.UUID) -> List[Segment]:
        """All segments of a document ordered by position."""
        result = await self.session.execute(
            select(Segment).where(Segment.document_id == document_id).order_by(Segment.position.asc())
        )
        return list(result.scalars().all())

    async def get_by_status(self, document_id: uuid.UUID, status: str) -> List[Segment]:
        result = await self.session.execute(
            select(Segment)
            .where(Segment.document_id == document_id, Segment.status == status)
            .order_by(Segment.position.asc())
        )
        return list(result.scalars().all())

    async def get_max_position(self, document_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(Segment.position), 0)).where(Segment.document_id == document_id)
        )
        return int(result.scalar_one())

    async def get_in_datasets(
        self, segment_ids: Iterable[uuid.UUID], dataset_ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, Segment]:
        """Load segments by ID restricted to the given datasets, keyed by ID."""
        segment_ids = list(segment_ids)
        dataset_ids = list(dataset_ids)
        if not segment_ids or not dataset_ids:
            return {}
        result = await self.session.execute(
            select(Segment).where(Segment.id.in_(segment_ids), Segment.dataset_id.in_(dataset_ids))
        )
        return {segment.id: segment for segment in result.scalars().all()}

    async def get_keywords(self, segment_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, List[str]]:
        segment_ids = list(segment_ids)
        if not segment_ids:
            return {}
        result = await self.session.execute(
            select(Segment.id, Segment.keywords).where(Segment.id.in_(segment_ids))
        )
        return {segment_id: list(keywords or []) for segment_id, keywords in result.all()}

    async def get_ids_by_document(self, document_id: uuid.UUID) -> List[uuid.UUID]:
        result = await self.session.execute(select(Segment.id).where(Segment.document_id == document_id))
        return list(result.scalars().all())

    async def increment_hit_count(self, segment_ids: Iterable[uuid.UUID]) -> None:
        """``hit_count = hit_count + 1`` in a single statement, once per distinct ID."""
        segment_ids = list(dict.fromkeys(segment_ids))
        if not segment_ids:
            return
        try:
            await self.session.execute(
                update(Segment)
                .where(Segment.id.in_(segment_ids))
                .values(hit_count=Segment.hit_count + 1)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating segment hit counts: {str(e)}", exc_info=True)
            await self.session.rollback()
            raise
