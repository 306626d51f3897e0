"""Tests for DatasetService."""

import uuid
from unittest.mock import AsyncMock

import pytest
from langchain_core.documents import Document as LCDocument

from voidx.core.exceptions import ConflictError, ForbiddenError, ValidationError
from voidx.database.models import Segment
from voidx.services.dataset_service import DatasetService
from voidx.services.event_dispatcher import EventDispatcher
from voidx.services.retrieval.retrieval_service import RetrievalService


@pytest.fixture
def bus():
    return AsyncMock()


@pytest.fixture
def service(session, bus, vector_store):
    return DatasetService(session, EventDispatcher(bus), RetrievalService(session, vector_store))


class TestDatasetCrud:
    @pytest.mark.asyncio
    async def test_create_trims_name(self, service, account_id):
        dataset = await service.create_dataset(account_id, "  Manuals ", description="product manuals")

        assert dataset.name == "Manuals"
        assert dataset.account_id == account_id

    @pytest.mark.asyncio
    async def test_names_are_unique_per_account(self, service, account_id):
        await service.create_dataset(account_id, "Manuals")

        with pytest.raises(ConflictError):
            await service.create_dataset(account_id, "Manuals")
        assert (await service.create_dataset(uuid.uuid4(), "Manuals")).name == "Manuals"

    @pytest.mark.asyncio
    async def test_blank_name(self, service, account_id):
        with pytest.raises(ValidationError):
            await service.create_dataset(account_id, "   ")

    @pytest.mark.asyncio
    async def test_delete_publishes_job(self, service, bus, account_id):
        dataset = await service.create_dataset(account_id, "Manuals")

        await service.delete_dataset(account_id, dataset.id)

        bus.publish.assert_awaited_once_with("dataset.delete", {"dataset_id": str(dataset.id)})

    @pytest.mark.asyncio
    async def test_delete_foreign_dataset(self, service, bus, account_id):
        dataset = await service.create_dataset(uuid.uuid4(), "Theirs")

        with pytest.raises(ForbiddenError):
            await service.delete_dataset(account_id, dataset.id)
        bus.publish.assert_not_awaited()


class TestHitTesting:
    @pytest.mark.asyncio
    async def test_hits_describe_segments_and_log_query(self, session, service, vector_store, account_id):
        dataset = await service.create_dataset(account_id, "Fruit")
        segment = Segment(
            account_id=account_id,
            dataset_id=dataset.id,
            document_id=uuid.uuid4(),
            position=3,
            content="bananas are yellow",
            keywords=["bananas", "yellow"],
            status="completed",
            enabled=True,
        )
        session.add(segment)
        await session.commit()
        vector_store.points[str(segment.node_id)] = LCDocument(
            page_content=segment.content,
            metadata={
                "dataset_id": str(dataset.id),
                "document_id": str(segment.document_id),
                "segment_id": str(segment.id),
                "node_id": str(segment.node_id),
                "document_enabled": True,
                "segment_enabled": True,
            },
        )

        hits = await service.hit_testing(account_id, dataset.id, "yellow bananas")

        assert len(hits) == 1
        hit = hits[0]
        assert hit["segment_id"] == str(segment.id)
        assert hit["content"] == "bananas are yellow"
        assert hit["position"] == 3
        assert hit["keywords"] == ["bananas", "yellow"]
        assert hit["retrieval_method"] == "semantic"
        assert hit["score"] > 0

        recent = await service.get_recent_queries(account_id, dataset.id)
        assert [(q.query, q.source) for q in recent] == [("yellow bananas", "hit_testing")]

    @pytest.mark.asyncio
    async def test_empty_query(self, service, account_id):
        dataset = await service.create_dataset(account_id, "Fruit")

        with pytest.raises(ValidationError):
            await service.hit_testing(account_id, dataset.id, "  ")

    @pytest.mark.asyncio
    async def test_no_hits(self, service, account_id):
        dataset = await service.create_dataset(account_id, "Fruit")

        assert await service.hit_testing(account_id, dataset.id, "anything") == []
