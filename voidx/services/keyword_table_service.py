"""Per-dataset keyword inverted index.

The table is stored as one JSON row per dataset mapping keyword to a list of
segment IDs. Postings are sets: adding an ID that is already present is a
no-op. Every mutation runs under ``lock:keyword_table:<dataset_id>``.
"""

import uuid
from typing import Dict, Iterable, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.core.interfaces import Locker
from voidx.core.locker import KEYWORD_TABLE_LOCK, hold_lock
from voidx.database.models import KeywordTable
from voidx.repositories.keyword_table_repository import KeywordTableRepository
from voidx.repositories.segment_repository import SegmentRepository
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class KeywordTableService:
    """Get-or-create, add and remove segment postings for a dataset."""

    def __init__(
        self,
        session: AsyncSession,
        locker: Locker,
        lock_ttl: float = 30.0,
        lock_timeout: float = 10.0,
    ):
        self.session = session
        self.locker = locker
        self.lock_ttl = lock_ttl
        self.lock_timeout = lock_timeout
        self.keyword_table_repo = KeywordTableRepository(session)
        self.segment_repo = SegmentRepository(session)

    def _lock(self, dataset_id: uuid.UUID):
        return hold_lock(
            self.locker,
            KEYWORD_TABLE_LOCK.format(dataset_id=dataset_id),
            ttl=self.lock_ttl,
            timeout=self.lock_timeout,
        )

    async def get_or_create(self, dataset_id: uuid.UUID) -> KeywordTable:
        table = await self.keyword_table_repo.get_by_dataset(dataset_id)
        if table is not None:
            return table
        try:
            return await self.keyword_table_repo.create(dataset_id=dataset_id, keyword_table={})
        except IntegrityError:
            # Another worker created the row first
            table = await self.keyword_table_repo.get_by_dataset(dataset_id)
            if table is None:
                raise
            return table

    async def add_segments(self, dataset_id: uuid.UUID, segment_ids: Iterable[uuid.UUID]) -> None:
        """Add each segment's stored keywords to the dataset's table."""
        segment_ids = list(segment_ids)
        if not segment_ids:
            return

        async with self._lock(dataset_id):
            keywords_by_segment = await self.segment_repo.get_keywords(segment_ids)
            table = await self.get_or_create(dataset_id)
            # Refresh so a table written by another holder of the lock is not clobbered
            await self.session.refresh(table)

            postings: Dict[str, List[str]] = {k: list(v) for k, v in (table.keyword_table or {}).items()}
            for segment_id in segment_ids:
                sid = str(segment_id)
                for keyword in keywords_by_segment.get(segment_id, []):
                    posting = postings.setdefault(keyword, [])
                    if sid not in posting:
                        posting.append(sid)

            await self.keyword_table_repo.replace_table(table, postings)

        LOGGER.debug(
            "Added segments to keyword table",
            extra={"dataset_id": str(dataset_id), "segment_count": len(segment_ids)},
        )

    async def remove_segments(self, dataset_id: uuid.UUID, segment_ids: Iterable[uuid.UUID]) -> None:
        """Drop the segment IDs from every posting; empty keywords are removed."""
        removed = {str(segment_id) for segment_id in segment_ids}
        if not removed:
            return

        async with self._lock(dataset_id):
            table = await self.get_or_create(dataset_id)
            await self.session.refresh(table)

            postings: Dict[str, List[str]] = {}
            for keyword, ids in (table.keyword_table or {}).items():
                kept = [sid for sid in ids if sid not in removed]
                if kept:
                    postings[keyword] = kept

            await self.keyword_table_repo.replace_table(table, postings)

        LOGGER.debug(
            "Removed segments from keyword table",
            extra={"dataset_id": str(dataset_id), "segment_count": len(removed)},
        )

    async def get_postings(self, dataset_id: uuid.UUID) -> Dict[str, List[str]]:
        """Read the table without locking; a missing table reads as empty."""
        table = await self.keyword_table_repo.get_by_dataset(dataset_id)
        return dict(table.keyword_table or {}) if table else {}
