"""Full-text, semantic and hybrid retrievers over dataset segments.

Every retriever returns LangChain documents whose metadata carries at least
``segment_id``, ``document_id``, ``dataset_id``, ``score`` and
``retrieval_method``.
"""

import asyncio
import uuid
from collections import Counter
from enum import Enum
from typing import Dict, List, Sequence, Union

from langchain_core.documents import Document as LCDocument
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.core.interfaces import VectorStore
from voidx.database.models import Segment
from voidx.repositories.keyword_table_repository import KeywordTableRepository
from voidx.repositories.segment_repository import SegmentRepository
from voidx.services.indexing.keyword_extractor import KeywordExtractor
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class RetrievalStrategy(str, Enum):
    FULL_TEXT = "full_text"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class RetrievalSource(str, Enum):
    HIT_TESTING = "hit_testing"
    APP = "app"


def _segment_to_document(segment: Segment) -> LCDocument:
    return LCDocument(
        page_content=segment.content,
        metadata={
            "account_id": str(segment.account_id),
            "dataset_id": str(segment.dataset_id),
            "document_id": str(segment.document_id),
            "segment_id": str(segment.id),
            "node_id": str(segment.node_id),
            "score": 0.0,
            "retrieval_method": RetrievalStrategy.FULL_TEXT.value,
        },
    )


class FullTextRetriever:
    """Keyword-table lookup ranked by how many query keywords hit each segment.

    Ties keep the order in which segments were first matched, so the result
    is stable for fixed inputs. Scores are always 0.
    """

    def __init__(self, session: AsyncSession, keyword_extractor: KeywordExtractor, keyword_top_n: int = 10):
        self.keyword_table_repo = KeywordTableRepository(session)
        self.segment_repo = SegmentRepository(session)
        self.keyword_extractor = keyword_extractor
        self.keyword_top_n = keyword_top_n

    async def retrieve(
        self,
        query: str,
        dataset_ids: Sequence[uuid.UUID],
        k: int = 4,
        score_threshold: float = 0.0,
    ) -> List[LCDocument]:
        keywords = self.keyword_extractor.extract(query, self.keyword_top_n)
        if not keywords or not dataset_ids:
            return []

        tables = await self.keyword_table_repo.get_by_datasets(dataset_ids)
        hits: List[str] = []
        for keyword in keywords:
            for table in tables:
                hits.extend((table.keyword_table or {}).get(keyword, []))
        if not hits:
            return []

        frequency = Counter(hits)
        # dict preserves first-occurrence order; sorted() is stable
        ranked = sorted(dict.fromkeys(hits), key=lambda sid: -frequency[sid])

        segments = await self.segment_repo.get_in_datasets([uuid.UUID(sid) for sid in ranked], dataset_ids)
        documents: List[LCDocument] = []
        for sid in ranked:
            segment = segments.get(uuid.UUID(sid))
            if segment is None or not segment.enabled:
                continue
            documents.append(_segment_to_document(segment))
            if len(documents) >= k:
                break
        return documents


class SemanticRetriever:
    """Vector similarity search restricted to enabled segments of the datasets."""

    def __init__(self, vector_store: VectorStore):
        self.vector_store = vector_store

    async def retrieve(
        self,
        query: str,
        dataset_ids: Sequence[uuid.UUID],
        k: int = 4,
        score_threshold: float = 0.0,
    ) -> List[LCDocument]:
        if not dataset_ids:
            return []
        documents = await self.vector_store.similarity_search(
            query,
            k=k,
            filter={
                "dataset_id": {"contains_any": [str(dataset_id) for dataset_id in dataset_ids]},
                "document_enabled": {"equal": True},
                "segment_enabled": {"equal": True},
            },
            score_threshold=score_threshold,
        )
        for document in documents:
            document.metadata["retrieval_method"] = RetrievalStrategy.SEMANTIC.value
        return documents


def merge_hybrid(
    full_text_documents: List[LCDocument],
    semantic_documents: List[LCDocument],
    k: int,
) -> List[LCDocument]:
    """Merge both result lists by ``segment_id``.

    Segments found by both strategies are ``hybrid`` and keep the semantic
    score. Scored documents come first, best score first, and equal scores keep
    their semantic order. Full-text-only documents follow in full-text order.
    The result is truncated to ``k``.
    """
    merged: Dict[str, LCDocument] = {}
    for document in semantic_documents:
        sid = document.metadata["segment_id"]
        if sid not in merged:
            merged[sid] = LCDocument(
                page_content=document.page_content,
                metadata={**document.metadata, "retrieval_method": RetrievalStrategy.SEMANTIC.value},
            )

    unscored: List[LCDocument] = []
    for document in full_text_documents:
        sid = document.metadata["segment_id"]
        if sid in merged:
            merged[sid].metadata["retrieval_method"] = RetrievalStrategy.HYBRID.value
        elif all(d.metadata["segment_id"] != sid for d in unscored):
            unscored.append(
                LCDocument(
                    page_content=document.page_content,
                    metadata={**document.metadata, "retrieval_method": RetrievalStrategy.FULL_TEXT.value},
                )
            )

    scored = sorted(merged.values(), key=lambda d: -float(d.metadata.get("score") or 0.0))
    return (scored + unscored)[:k]


class HybridRetriever:
    """Runs full-text and semantic retrieval concurrently and merges the results.

    A failing strategy is logged and treated as empty.
    """

    def __init__(self, full_text: FullTextRetriever, semantic: SemanticRetriever):
        self.full_text = full_text
        self.semantic = semantic

    async def retrieve(
        self,
        query: str,
        dataset_ids: Sequence[uuid.UUID],
        k: int = 4,
        score_threshold: float = 0.0,
    ) -> List[LCDocument]:
        full_text_result, semantic_result = await asyncio.gather(
            self.full_text.retrieve(query, dataset_ids, k, score_threshold),
            self.semantic.retrieve(query, dataset_ids, k, score_threshold),
            return_exceptions=True,
        )
        return merge_hybrid(
            self._or_empty(RetrievalStrategy.FULL_TEXT, full_text_result),
            self._or_empty(RetrievalStrategy.SEMANTIC, semantic_result),
            k,
        )

    @staticmethod
    def _or_empty(strategy: RetrievalStrategy, result) -> List[LCDocument]:
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            LOGGER.error(
                f"{strategy.value} retrieval failed, continuing without it",
                exc_info=result,
                extra={"strategy": strategy.value},
            )
            return []
        return result


def build_retriever(
    strategy: RetrievalStrategy,
    session: AsyncSession,
    vector_store: VectorStore,
    keyword_extractor: KeywordExtractor,
    keyword_top_n: int = 10,
) -> Union[FullTextRetriever, SemanticRetriever, HybridRetriever]:
    full_text = FullTextRetriever(session, keyword_extractor, keyword_top_n)
    semantic = SemanticRetriever(vector_store)
    if strategy == RetrievalStrategy.FULL_TEXT:
        return full_text
    if strategy == RetrievalStrategy.SEMANTIC:
        return semantic
    return HybridRetriever(full_text, semantic)
