import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.database.models import Document, ProcessRule, Segment, UploadFile
from voidx.repositories.base_repository import BaseRepository


class DocumentRepository(BaseRepository[Document]):
    """Repository for dataset documents."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Document)

    async def get_by_dataset(self, dataset_id: uuid.UUID) -> list[Document]:
        result = await self.session.execute(
            select(Document).where(Document.dataset_id == dataset_id).order_by(Document.position.asc())
        )
        return list(result.scalars().all())

    async def get_latest_position(self, dataset_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(Document.position), 0)).where(Document.dataset_id == dataset_id)
        )
        return int(result.scalar_one())

    async def refresh_aggregates(self, document_id: uuid.UUID) -> Optional[Document]:
        """Re-materialize ``character_count`` and ``token_count`` from the segments."""
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(Segment.character_count), 0),
                func.coalesce(func.sum(Segment.token_count), 0),
            ).where(Segment.document_id == document_id)
        )
        character_count, token_count = result.one()
        return await self.update(
            document_id,
            character_count=int(character_count),
            token_count=int(token_count),
        )


class UploadFileRepository(BaseRepository[UploadFile]):
    """Repository for uploaded file handles."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, UploadFile)


class ProcessRuleRepository(BaseRepository[ProcessRule]):
    """Repository for document process rules (insert and read only)."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ProcessRule)
