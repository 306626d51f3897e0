"""Dataset search used by hit testing and by workflow retrieval nodes."""

import asyncio
import uuid
from typing import Iterable, List, Optional, Sequence, Set

from langchain_core.documents import Document as LCDocument
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voidx.core.exceptions import ForbiddenError, ValidationError
from voidx.core.interfaces import VectorStore
from voidx.repositories.dataset_repository import DatasetQueryRepository, DatasetRepository
from voidx.repositories.segment_repository import SegmentRepository
from voidx.services.indexing.keyword_extractor import KeywordExtractor
from voidx.services.retrieval.retrievers import RetrievalSource, RetrievalStrategy, build_retriever
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


def combine_documents(documents: Iterable[LCDocument]) -> str:
    """Join document contents with blank lines."""
    return "\n\n".join(document.page_content for document in documents)


class RetrievalService:
    """Validates access, runs a retriever strategy and does post-search bookkeeping.

    Query logging and hit counting run as background tasks on their own
    sessions so they never delay or fail the search itself.
    """

    def __init__(
        self,
        session: AsyncSession,
        vector_store: VectorStore,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        keyword_extractor: Optional[KeywordExtractor] = None,
        keyword_top_n: int = 10,
    ):
        """
        Args:
            session: Session used by the search itself
            vector_store: Vector store for semantic retrieval
            session_maker: Factory for background-task sessions; without one the
                bookkeeping runs inline on ``session`` after the search
            keyword_extractor: Keyword extractor for full-text retrieval
            keyword_top_n: Query keywords used by full-text retrieval
        """
        self.session = session
        self.vector_store = vector_store
        self.session_maker = session_maker
        self.keyword_extractor = keyword_extractor or KeywordExtractor()
        self.keyword_top_n = keyword_top_n
        self.dataset_repo = DatasetRepository(session)
        self._background_tasks: Set[asyncio.Task] = set()

    async def validate_dataset_access(
        self, account_id: uuid.UUID, dataset_ids: Iterable[uuid.UUID]
    ) -> List[uuid.UUID]:
        """Return the datasets in ``dataset_ids`` owned by ``account_id``.

        Raises:
            ForbiddenError: If the account owns none of them
        """
        owned = await self.dataset_repo.get_owned_ids(account_id, dataset_ids)
        if not owned:
            raise ForbiddenError("no accessible dataset")
        return owned

    async def record_dataset_query(
        self,
        account_id: uuid.UUID,
        dataset_id: uuid.UUID,
        query: str,
        source: str,
        source_app_id: Optional[uuid.UUID] = None,
        session: Optional[AsyncSession] = None,
    ) -> None:
        """Best-effort query log; failures are logged, never raised."""
        try:
            await DatasetQueryRepository(session or self.session).record(
                dataset_id=dataset_id,
                query=query,
                source=source,
                created_by=account_id,
                source_app_id=source_app_id,
            )
        except Exception as e:
            LOGGER.warning(
                f"Failed to record dataset query: {str(e)}",
                extra={"dataset_id": str(dataset_id), "source": source},
            )

    async def update_segment_hit_count(
        self, segment_ids: Iterable[uuid.UUID], session: Optional[AsyncSession] = None
    ) -> None:
        await SegmentRepository(session or self.session).increment_hit_count(segment_ids)

    async def search(
        self,
        account_id: uuid.UUID,
        dataset_ids: Sequence[uuid.UUID],
        query: str,
        retrieval_strategy: str = RetrievalStrategy.SEMANTIC.value,
        k: int = 4,
        score: float = 0.0,
        retrieval_source: str = RetrievalSource.HIT_TESTING.value,
        source_app_id: Optional[uuid.UUID] = None,
    ) -> List[LCDocument]:
        """Search the account's datasets.

        Args:
            account_id: Caller account; only its datasets are searched
            dataset_ids: Candidate datasets
            query: Search text
            retrieval_strategy: ``full_text``, ``semantic`` or ``hybrid``
            k: Maximum number of documents
            score: Minimum semantic score; 0 disables the threshold
            retrieval_source: ``hit_testing`` or ``app`` for the query log
            source_app_id: App issuing the query, if any

        Returns:
            Documents best first

        Raises:
            ValidationError: If the strategy, k or score is invalid
            ForbiddenError: If none of the datasets belong to the account
        """
        if not query or not query.strip() or not dataset_ids:
            return []
        try:
            strategy = RetrievalStrategy(retrieval_strategy)
        except ValueError as e:
            raise ValidationError(f"Unknown retrieval strategy: {retrieval_strategy}", original_error=e) from e
        if k < 1:
            raise ValidationError("k must be at least 1")
        if not 0.0 <= score <= 1.0:
            raise ValidationError("score must be between 0 and 1")

        owned = await self.validate_dataset_access(account_id, dataset_ids)
        retriever = build_retriever(strategy, self.session, self.vector_store, self.keyword_extractor, self.keyword_top_n)
        documents = await retriever.retrieve(query, owned, k=k, score_threshold=score)

        LOGGER.info(
            f"{strategy.value} search returned {len(documents)} document(s)",
            extra={"account_id": str(account_id), "datasets": len(owned), "source": retrieval_source},
        )

        if documents:
            await self._schedule_bookkeeping(account_id, documents, query, retrieval_source, source_app_id)
        return documents

    async def _schedule_bookkeeping(
        self,
        account_id: uuid.UUID,
        documents: List[LCDocument],
        query: str,
        source: str,
        source_app_id: Optional[uuid.UUID],
    ) -> None:
        dataset_ids = list(dict.fromkeys(uuid.UUID(d.metadata["dataset_id"]) for d in documents))
        segment_ids = [uuid.UUID(d.metadata["segment_id"]) for d in documents]

        if self.session_maker is None:
            await self._bookkeeping(account_id, dataset_ids, segment_ids, query, source, source_app_id, self.session)
            return

        async def run() -> None:
            async with self.session_maker() as session:
                await self._bookkeeping(account_id, dataset_ids, segment_ids, query, source, source_app_id, session)

        task = asyncio.create_task(run())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _bookkeeping(
        self,
        account_id: uuid.UUID,
        dataset_ids: List[uuid.UUID],
        segment_ids: List[uuid.UUID],
        query: str,
        source: str,
        source_app_id: Optional[uuid.UUID],
        session: AsyncSession,
    ) -> None:
        for dataset_id in dataset_ids:
            await self.record_dataset_query(account_id, dataset_id, query, source, source_app_id, session=session)
        try:
            await self.update_segment_hit_count(segment_ids, session=session)
        except Exception as e:
            LOGGER.warning(f"Failed to update segment hit counts: {str(e)}", extra={"segments": len(segment_ids)})

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending bookkeeping tasks (used on shutdown and in tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
