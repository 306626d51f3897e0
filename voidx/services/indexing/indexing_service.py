"""Document indexing pipeline.

Each document moves through parsing, splitting, indexing and completed.
A stage failure marks the document ``error`` and the pipeline moves on to
the next document; nothing is raised to the caller.

Segments are addressed by position within their document, so a retried
build reuses the segment IDs and vector-store node IDs assigned by the
earlier attempt instead of inserting duplicates.
"""

import hashlib
import uuid
from typing import Callable, Dict, Iterable, List, Optional

from langchain_core.documents import Document as LCDocument
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.core.clock import SystemClock
from voidx.core.exceptions import IndexingError
from voidx.core.interfaces import Clock, Locker, ObjectStore, VectorStore
from voidx.core.locker import DOCUMENT_ENABLED_LOCK, hold_lock
from voidx.database.models import Document, Segment
from voidx.repositories.dataset_repository import DatasetQueryRepository, DatasetRepository
from voidx.repositories.document_repository import (
    DocumentRepository,
    ProcessRuleRepository,
    UploadFileRepository,
)
from voidx.repositories.keyword_table_repository import KeywordTableRepository
from voidx.repositories.segment_repository import SegmentRepository
from voidx.services.indexing.file_extractor import FileExtractor
from voidx.services.indexing.keyword_extractor import KeywordExtractor
from voidx.services.indexing.text_splitter import build_text_splitter, clean_text_by_rule, default_process_rule
from voidx.services.keyword_table_service import KeywordTableService
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class IndexingService:
    """Builds, toggles and deletes the indexed form of documents."""

    def __init__(
        self,
        session: AsyncSession,
        vector_store: VectorStore,
        object_store: ObjectStore,
        locker: Locker,
        count_tokens: Callable[[str], int],
        keyword_extractor: Optional[KeywordExtractor] = None,
        clock: Optional[Clock] = None,
        batch_size: int = 10,
        keyword_limit: int = 10,
        lock_ttl: float = 30.0,
        lock_timeout: float = 10.0,
    ):
        """Initialize the pipeline.

        Args:
            session: Database session shared by all repositories
            vector_store: Destination for segment embeddings
            object_store: Source of uploaded file bytes
            locker: Distributed lock for keyword tables and enable toggles
            count_tokens: Token length function used for splitting and counters
            keyword_extractor: Keyword extractor (jieba-based by default)
            clock: Wall clock for lifecycle timestamps
            batch_size: Segments per vector-store write
            keyword_limit: Maximum keywords kept per segment
            lock_ttl: Lock expiry in seconds
            lock_timeout: Seconds to wait for a lock before giving up
        """
        self.session = session
        self.vector_store = vector_store
        self.locker = locker
        self.count_tokens = count_tokens
        self.keyword_extractor = keyword_extractor or KeywordExtractor()
        self.clock = clock or SystemClock()
        self.batch_size = batch_size
        self.keyword_limit = keyword_limit
        self.lock_ttl = lock_ttl
        self.lock_timeout = lock_timeout

        self.file_extractor = FileExtractor(object_store)
        self.keyword_table = KeywordTableService(session, locker, lock_ttl=lock_ttl, lock_timeout=lock_timeout)
        self.dataset_repo = DatasetRepository(session)
        self.dataset_query_repo = DatasetQueryRepository(session)
        self.document_repo = DocumentRepository(session)
        self.upload_file_repo = UploadFileRepository(session)
        self.process_rule_repo = ProcessRuleRepository(session)
        self.segment_repo = SegmentRepository(session)
        self.keyword_table_repo = KeywordTableRepository(session)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    async def build_documents(self, document_ids: Iterable[uuid.UUID]) -> None:
        """Run the full pipeline for each document independently."""
        for document_id in document_ids:
            document = await self.document_repo.get_by_id(document_id)
            if document is None:
                LOGGER.warning("Document to build does not exist", extra={"document_id": str(document_id)})
                continue
            dataset_id = document.dataset_id

            try:
                await self._build_document(document)
            except Exception as e:
                LOGGER.error(
                    f"Failed to build document {document_id}: {str(e)}",
                    exc_info=True,
                    extra={"document_id": str(document_id), "dataset_id": str(dataset_id)},
                )
                await self.session.rollback()
                await self.document_repo.update(
                    document_id,
                    status="error",
                    error=str(e) or e.__class__.__name__,
                    stopped_at=self.clock.now(),
                )

    async def _build_document(self, document: Document) -> None:
        await self.document_repo.update(
            document.id,
            status="parsing",
            processing_started_at=self.clock.now(),
            error="",
            stopped_at=None,
        )

        lc_documents = await self._parse(document)
        chunks = await self._split(document, lc_documents)
        segments = await self._save_segments(document, chunks)
        await self._index(document, segments)
        await self._complete(document, segments)

        LOGGER.info(
            f"Built document {document.id} into {len(segments)} segment(s)",
            extra={"document_id": str(document.id), "dataset_id": str(document.dataset_id)},
        )

    async def _parse(self, document: Document) -> List[LCDocument]:
        upload_file = await self.upload_file_repo.get_by_id(document.upload_file_id)
        if upload_file is None:
            raise IndexingError(f"Upload file {document.upload_file_id} does not exist")

        lc_documents = await self.file_extractor.load(upload_file)
        await self.document_repo.update(
            document.id,
            status="splitting",
            character_count=sum(len(d.page_content) for d in lc_documents),
            parsing_completed_at=self.clock.now(),
        )
        return lc_documents

    async def _split(self, document: Document, lc_documents: List[LCDocument]) -> List[str]:
        process_rule = await self.process_rule_repo.get_by_id(document.process_rule_id)
        rule = process_rule.rule if process_rule and process_rule.rule else default_process_rule()
        splitter = build_text_splitter(rule, self.count_tokens)

        chunks: List[str] = []
        for lc_document in lc_documents:
            text = clean_text_by_rule(lc_document.page_content, rule)
            chunks.extend(chunk for chunk in splitter.split_text(text) if chunk.strip())
        return chunks

    async def _save_segments(self, document: Document, chunks: List[str]) -> List[Segment]:
        existing = await self.segment_repo.get_by_document(document.id)
        by_position: Dict[int, Segment] = {segment.position: segment for segment in existing}

        # Keywords of a previous attempt may no longer match the new content
        if existing:
            await self.keyword_table.remove_segments(document.dataset_id, [s.id for s in existing])

        now = self.clock.now()
        next_position = max(by_position, default=0) + 1
        segments: List[Segment] = []
        for index, chunk in enumerate(chunks):
            values = dict(
                content=chunk,
                character_count=len(chunk),
                token_count=self.count_tokens(chunk),
                hash=content_hash(chunk),
                keywords=[],
                status="waiting",
                enabled=False,
                error="",
                processing_started_at=now,
                indexing_completed_at=None,
                completed_at=None,
                stopped_at=None,
            )
            reused = by_position.pop(index + 1, None)
            if reused is not None:
                segments.append(await self.segment_repo.update(reused.id, **values))
                continue
            segments.append(
                await self.segment_repo.create(
                    id=uuid.uuid4(),
                    node_id=uuid.uuid4(),
                    account_id=document.account_id,
                    dataset_id=document.dataset_id,
                    document_id=document.id,
                    position=next_position,
                    **values,
                )
            )
            next_position += 1

        # Leftovers from a longer previous attempt
        for segment in by_position.values():
            await self.vector_store.delete_by_filter({"node_id": {"equal": str(segment.node_id)}})
            await self.segment_repo.delete(segment.id)

        await self.document_repo.update(
            document.id,
            status="indexing",
            token_count=sum(segment.token_count for segment in segments),
            splitting_completed_at=self.clock.now(),
        )
        return segments

    async def _index(self, document: Document, segments: List[Segment]) -> None:
        for segment in segments:
            keywords = self.keyword_extractor.extract(segment.content, self.keyword_limit)
            await self.segment_repo.update(
                segment.id,
                keywords=keywords,
                status="indexing",
                indexing_completed_at=self.clock.now(),
            )

        await self.keyword_table.add_segments(document.dataset_id, [segment.id for segment in segments])
        await self.document_repo.update(document.id, indexing_completed_at=self.clock.now())

    async def _complete(self, document: Document, segments: List[Segment]) -> None:
        failed: List[uuid.UUID] = []
        for start in range(0, len(segments), self.batch_size):
            batch = segments[start:start + self.batch_size]
            ids = [segment.id for segment in batch]
            try:
                await self.vector_store.add_documents([self._to_lc_document(segment) for segment in batch])
            except Exception as e:
                LOGGER.error(
                    f"Vector store write failed for {len(batch)} segment(s): {str(e)}",
                    exc_info=True,
                    extra={"document_id": str(document.id)},
                )
                await self.segment_repo.update_many(
                    ids,
                    status="error",
                    enabled=False,
                    error=str(e) or e.__class__.__name__,
                    stopped_at=self.clock.now(),
                )
                failed.extend(ids)
                continue

            await self.segment_repo.update_many(
                ids,
                status="completed",
                enabled=True,
                error="",
                completed_at=self.clock.now(),
            )

        if failed:
            await self.keyword_table.remove_segments(document.dataset_id, failed)

        await self.document_repo.refresh_aggregates(document.id)
        await self.document_repo.update(
            document.id,
            status="completed",
            enabled=True,
            disabled_at=None,
            completed_at=self.clock.now(),
        )

    def _to_lc_document(self, segment: Segment) -> LCDocument:
        return LCDocument(
            page_content=segment.content,
            metadata={
                "account_id": str(segment.account_id),
                "dataset_id": str(segment.dataset_id),
                "document_id": str(segment.document_id),
                "segment_id": str(segment.id),
                "node_id": str(segment.node_id),
                "document_enabled": True,
                "segment_enabled": True,
            },
        )

    # ------------------------------------------------------------------
    # Enable toggle
    # ------------------------------------------------------------------

    async def update_document_enabled(self, document_id: uuid.UUID) -> None:
        """Propagate the document's current ``enabled`` flag to its index entries."""
        document = await self.document_repo.get_by_id(document_id)
        if document is None:
            LOGGER.warning("Document to toggle does not exist", extra={"document_id": str(document_id)})
            return

        lock_key = DOCUMENT_ENABLED_LOCK.format(document_id=document_id)
        async with hold_lock(self.locker, lock_key, ttl=self.lock_ttl, timeout=self.lock_timeout):
            enabled = document.enabled
            segments = await self.segment_repo.get_by_status(document_id, "completed")

            failed = set()
            for segment in segments:
                try:
                    await self.vector_store.update_metadata(
                        {"node_id": {"equal": str(segment.node_id)}},
                        {"document_enabled": enabled},
                    )
                except Exception as e:
                    LOGGER.error(
                        f"Failed to update vector metadata for segment {segment.id}",
                        exc_info=True,
                        extra={"document_id": str(document_id), "error": str(e)},
                    )
                    await self.segment_repo.update(
                        segment.id,
                        status="error",
                        enabled=False,
                        error=str(e) or e.__class__.__name__,
                        stopped_at=self.clock.now(),
                    )
                    failed.add(segment.id)

            if enabled:
                await self.keyword_table.add_segments(
                    document.dataset_id,
                    [s.id for s in segments if s.enabled and s.id not in failed],
                )
            else:
                await self.keyword_table.remove_segments(
                    document.dataset_id,
                    await self.segment_repo.get_ids_by_document(document_id),
                )

            await self.document_repo.refresh_aggregates(document_id)

        LOGGER.info(
            f"Document {document_id} enabled={enabled} applied to {len(segments) - len(failed)} segment(s)",
            extra={"document_id": str(document_id), "failed": len(failed)},
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_document(self, dataset_id: uuid.UUID, document_id: uuid.UUID) -> None:
        """Remove a document's vectors, segments, keyword postings and row.

        Each step is attempted even if an earlier one failed.
        """
        segment_ids = await self.segment_repo.get_ids_by_document(document_id)

        try:
            await self.vector_store.delete_by_filter({"document_id": {"equal": str(document_id)}})
        except Exception as e:
            LOGGER.error("Failed to delete document vectors", exc_info=True, extra={"document_id": str(document_id), "error": str(e)})

        try:
            await self.keyword_table.remove_segments(dataset_id, segment_ids)
        except Exception as e:
            LOGGER.error("Failed to remove document keywords", exc_info=True, extra={"document_id": str(document_id), "error": str(e)})

        try:
            await self.segment_repo.delete_where(document_id=document_id)
            await self.document_repo.delete(document_id)
        except Exception as e:
            LOGGER.error("Failed to delete document rows", exc_info=True, extra={"document_id": str(document_id), "error": str(e)})

        LOGGER.info(f"Deleted document {document_id}", extra={"dataset_id": str(dataset_id), "segments": len(segment_ids)})

    async def delete_dataset(self, dataset_id: uuid.UUID) -> None:
        """Cascade a dataset delete to its rows and then to its vectors."""
        try:
            await self.segment_repo.delete_where(dataset_id=dataset_id)
            await self.document_repo.delete_where(dataset_id=dataset_id)
            await self.keyword_table_repo.delete_where(dataset_id=dataset_id)
            await self.dataset_query_repo.delete_where(dataset_id=dataset_id)
            await self.process_rule_repo.delete_where(dataset_id=dataset_id)
            await self.dataset_repo.delete(dataset_id)
        except Exception as e:
            LOGGER.error("Failed to delete dataset rows", exc_info=True, extra={"dataset_id": str(dataset_id), "error": str(e)})

        try:
            await self.vector_store.delete_by_filter({"dataset_id": {"equal": str(dataset_id)}})
        except Exception as e:
            LOGGER.error("Failed to delete dataset vectors", exc_info=True, extra={"dataset_id": str(dataset_id), "error": str(e)})

        LOGGER.info(f"Deleted dataset {dataset_id}", extra={"dataset_id": str(dataset_id)})
