"""pgvector-backed vector store over the ``vector_points`` table."""

import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from langchain_core.documents import Document
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voidx.core.exceptions import DatabaseError
from voidx.core.interfaces import VectorFilter
from voidx.database.models import VectorPoint
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

_UUID_FIELDS = {"node_id", "account_id", "dataset_id", "document_id", "segment_id"}
_BOOL_FIELDS = {"document_enabled", "segment_enabled"}
FILTERABLE_FIELDS = _UUID_FIELDS | _BOOL_FIELDS


def _coerce(field: str, value: Any) -> Any:
    if field in _UUID_FIELDS and isinstance(value, str):
        return uuid.UUID(value)
    return value


def build_conditions(filter: Optional[VectorFilter]) -> list:
    """Translate the ``{field: {equal|contains_any: ...}}`` DSL into SQL predicates."""
    conditions = []
    for field, clause in (filter or {}).items():
        if field not in FILTERABLE_FIELDS:
            raise ValueError(f"Field {field} is not filterable")
        column = getattr(VectorPoint, field)
        if "equal" in clause:
            conditions.append(column == _coerce(field, clause["equal"]))
        elif "contains_any" in clause:
            conditions.append(column.in_([_coerce(field, v) for v in clause["contains_any"]]))
        else:
            raise ValueError(f"Unsupported filter operator for {field}: {list(clause)}")
    return conditions


class PgVectorStore:
    """Vector store keyed by ``node_id`` with cosine similarity search.

    ``score`` reported on search results is ``1 - cosine_distance``.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        embed: Callable[[str], Awaitable[List[float]]],
    ):
        """Initialize the store.

        Args:
            session_maker: Factory for sessions on the database holding ``vector_points``
            embed: Async embedding function (usually ``LanguageModel.embed``)
        """
        self._session_maker = session_maker
        self._embed = embed

    async def add_documents(self, documents: List[Document]) -> List[str]:
        node_ids: List[str] = []
        points = []
        for document in documents:
            metadata = dict(document.metadata)
            node_id = _coerce("node_id", metadata.pop("node_id", None) or str(uuid.uuid4()))
            embedding = await self._embed(document.page_content)
            columns = {field: _coerce(field, metadata.pop(field)) for field in FILTERABLE_FIELDS - {"node_id"} if field in metadata}
            points.append(
                VectorPoint(
                    node_id=node_id,
                    content=document.page_content,
                    embedding=embedding,
                    meta={key: str(value) for key, value in metadata.items()},
                    **columns,
                )
            )
            node_ids.append(str(node_id))

        try:
            async with self._session_maker() as session:
                for point in points:
                    # Upsert so a retried build does not duplicate points
                    await session.merge(point)
                await session.commit()
        except SQLAlchemyError as e:
            LOGGER.error("Failed to add vector points", exc_info=True, extra={"count": len(points)})
            raise DatabaseError(f"Vector store insert failed: {str(e)}", original_error=e) from e
        return node_ids

    async def similarity_search(
        self,
        query: str,
        k: int = 4,
        filter: Optional[VectorFilter] = None,
        score_threshold: float = 0.0,
    ) -> List[Document]:
        embedding = await self._embed(query)
        distance = VectorPoint.embedding.cosine_distance(embedding).label("distance")
        statement = (
            select(VectorPoint, distance)
            .where(*build_conditions(filter))
            .order_by(distance.asc())
            .limit(k)
        )

        try:
            async with self._session_maker() as session:
                rows = (await session.execute(statement)).all()
        except SQLAlchemyError as e:
            LOGGER.error("Vector similarity search failed", exc_info=True)
            raise DatabaseError(f"Vector search failed: {str(e)}", original_error=e) from e

        documents = []
        for point, point_distance in rows:
            score = 1.0 - float(point_distance)
            if score_threshold > 0 and score < score_threshold:
                continue
            documents.append(
                Document(
                    page_content=point.content,
                    metadata={
                        **point.meta,
                        "node_id": str(point.node_id),
                        "account_id": str(point.account_id) if point.account_id else None,
                        "dataset_id": str(point.dataset_id) if point.dataset_id else None,
                        "document_id": str(point.document_id) if point.document_id else None,
                        "segment_id": str(point.segment_id) if point.segment_id else None,
                        "document_enabled": point.document_enabled,
                        "segment_enabled": point.segment_enabled,
                        "score": score,
                    },
                )
            )
        return documents

    async def update_metadata(self, filter: VectorFilter, values: Dict[str, Any]) -> int:
        unknown = set(values) - FILTERABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update non-column metadata fields: {sorted(unknown)}")
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    update(VectorPoint)
                    .where(*build_conditions(filter))
                    .values({field: _coerce(field, value) for field, value in values.items()})
                )
                await session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            LOGGER.error("Vector metadata update failed", exc_info=True, extra={"values": values})
            raise DatabaseError(f"Vector metadata update failed: {str(e)}", original_error=e) from e

    async def delete_by_filter(self, filter: VectorFilter) -> int:
        if not filter:
            raise ValueError("Refusing to delete vector points without a filter")
        try:
            async with self._session_maker() as session:
                result = await session.execute(delete(VectorPoint).where(*build_conditions(filter)))
                await session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            LOGGER.error("Vector delete failed", exc_info=True)
            raise DatabaseError(f"Vector delete failed: {str(e)}", original_error=e) from e
