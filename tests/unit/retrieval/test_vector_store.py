"""Tests for the pgvector store: SQL it emits and how rows become documents."""

import uuid
from unittest.mock import Mock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from voidx.core.exceptions import DatabaseError
from voidx.core.vector_store import PgVectorStore, build_conditions
from voidx.database.models import VectorPoint

DATASET_A = uuid.uuid4()
DATASET_B = uuid.uuid4()


def compile_pg(clause):
    return clause.compile(dialect=postgresql.dialect())


async def embed(text):
    return [0.1, 0.2, 0.3]


class RecordingSession:
    """Stands in for an AsyncSession; keeps every statement it is asked to run."""

    def __init__(self, rows=(), error=None):
        self.rows = list(rows)
        self.error = error
        self.statements = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, statement):
        self.statements.append(statement)
        if self.error:
            raise self.error
        return Mock(**{"all.return_value": self.rows})


def point(content, **columns):
    return VectorPoint(
        node_id=uuid.uuid4(),
        content=content,
        embedding=[0.1, 0.2, 0.3],
        meta={"source": "manual.pdf"},
        account_id=columns.get("account_id", uuid.uuid4()),
        dataset_id=columns.get("dataset_id", DATASET_A),
        document_id=columns.get("document_id", uuid.uuid4()),
        segment_id=columns.get("segment_id", uuid.uuid4()),
        document_enabled=True,
        segment_enabled=True,
    )


def store_with(session):
    return PgVectorStore(session_maker=lambda: session, embed=embed)


class TestBuildConditions:
    def test_enabled_dataset_filter(self):
        conditions = build_conditions(
            {
                "dataset_id": {"contains_any": [str(DATASET_A), str(DATASET_B)]},
                "document_enabled": {"equal": True},
                "segment_enabled": {"equal": True},
            }
        )

        assert len(conditions) == 3
        compiled = [compile_pg(condition) for condition in conditions]
        assert "vector_points.dataset_id IN" in str(compiled[0])
        assert [DATASET_A, DATASET_B] in compiled[0].params.values()
        assert "vector_points.document_enabled" in str(compiled[1])
        assert "vector_points.segment_enabled" in str(compiled[2])

    def test_equal_on_uuid_column_coerces_strings(self):
        document_id = uuid.uuid4()

        (condition,) = build_conditions({"document_id": {"equal": str(document_id)}})

        compiled = compile_pg(condition)
        assert str(compiled).startswith("vector_points.document_id = ")
        assert list(compiled.params.values()) == [document_id]

    def test_no_filter(self):
        assert build_conditions(None) == []
        assert build_conditions({}) == []

    def test_unknown_field(self):
        with pytest.raises(ValueError, match="not filterable"):
            build_conditions({"content": {"equal": "x"}})

    def test_unknown_operator(self):
        with pytest.raises(ValueError, match="Unsupported filter operator"):
            build_conditions({"dataset_id": {"greater_than": 1}})


class TestSimilaritySearch:
    @pytest.mark.asyncio
    async def test_statement_orders_by_cosine_distance(self):
        session = RecordingSession()

        await store_with(session).similarity_search(
            "warranty", k=3, filter={"dataset_id": {"contains_any": [str(DATASET_A)]}}
        )

        (statement,) = session.statements
        compiled = compile_pg(statement)
        sql = str(compiled)
        assert "vector_points.embedding <=> " in sql
        assert "AS distance" in sql
        assert "WHERE vector_points.dataset_id IN" in sql
        assert "ORDER BY distance ASC" in sql
        assert "LIMIT" in sql
        assert 3 in compiled.params.values()
        assert [DATASET_A] in compiled.params.values()

    @pytest.mark.asyncio
    async def test_rows_become_scored_documents(self):
        near = point("near")
        session = RecordingSession(rows=[(near, 0.25)])

        (document,) = await store_with(session).similarity_search("warranty")

        assert document.page_content == "near"
        assert document.metadata["score"] == 0.75
        assert document.metadata["source"] == "manual.pdf"
        assert document.metadata["node_id"] == str(near.node_id)
        assert document.metadata["dataset_id"] == str(DATASET_A)
        assert document.metadata["segment_id"] == str(near.segment_id)
        assert document.metadata["document_enabled"] is True

    @pytest.mark.asyncio
    async def test_threshold_drops_rows_below_it_and_keeps_equal(self):
        rows = [(point("near"), 0.25), (point("edge"), 0.5), (point("far"), 0.75)]

        documents = await store_with(RecordingSession(rows=rows)).similarity_search("warranty", score_threshold=0.5)

        assert [d.page_content for d in documents] == ["near", "edge"]
        assert [d.metadata["score"] for d in documents] == [0.75, 0.5]

    @pytest.mark.asyncio
    async def test_zero_threshold_keeps_every_row(self):
        rows = [(point("near"), 0.25), (point("edge"), 0.5), (point("opposite"), 1.5)]

        documents = await store_with(RecordingSession(rows=rows)).similarity_search("warranty", score_threshold=0.0)

        assert [d.page_content for d in documents] == ["near", "edge", "opposite"]
        assert documents[-1].metadata["score"] == -0.5

    @pytest.mark.asyncio
    async def test_database_failure(self):
        session = RecordingSession(error=OperationalError("SELECT", {}, Exception("connection reset")))

        with pytest.raises(DatabaseError, match="Vector search failed"):
            await store_with(session).similarity_search("warranty")
