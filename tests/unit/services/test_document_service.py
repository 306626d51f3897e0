"""Tests for DocumentService."""

import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from voidx.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from voidx.database.models import Dataset, Document, ProcessRule, UploadFile
from voidx.services.document_service import DocumentService
from voidx.services.event_dispatcher import EventDispatcher


@pytest.fixture
def bus():
    bus = AsyncMock()
    bus.publish.return_value = None
    return bus


@pytest.fixture
def service(session, bus):
    return DocumentService(session, EventDispatcher(bus))


async def _dataset_with_files(session, account_id, extensions=("txt",)):
    dataset = Dataset(account_id=account_id, name="Docs")
    session.add(dataset)
    files = [
        UploadFile(account_id=account_id, name=f"file{index}.{ext}", key=f"k/{index}.{ext}", extension=ext)
        for index, ext in enumerate(extensions)
    ]
    session.add_all(files)
    await session.commit()
    return dataset, files


async def _document(session, account_id, dataset, status="completed", enabled=True):
    document = Document(
        account_id=account_id,
        dataset_id=dataset.id,
        upload_file_id=uuid.uuid4(),
        process_rule_id=uuid.uuid4(),
        name="doc.txt",
        status=status,
        enabled=enabled,
    )
    session.add(document)
    await session.commit()
    return document


def published(bus):
    return [(call.args[0], call.args[1]) for call in bus.publish.await_args_list]


class TestCreateDocuments:
    @pytest.mark.asyncio
    async def test_creates_waiting_documents_and_publishes_builds(self, session, service, bus, account_id):
        dataset, files = await _dataset_with_files(session, account_id, ("txt", "md", "exe"))

        documents, batch = await service.create_documents(account_id, dataset.id, [f.id for f in files])

        assert sorted(d.name for d in documents) == ["file0.txt", "file1.md"]
        assert sorted(d.position for d in documents) == [1, 2]
        assert all(d.status == "waiting" and d.batch == batch for d in documents)
        assert len(batch) == 20
        assert published(bus) == [("document.build", {"document_id": str(d.id)}) for d in documents]

        rule = (await session.execute(select(ProcessRule))).scalar_one()
        assert rule.mode == "automatic"
        assert rule.rule["segment"]["chunk_size"] == 500

    @pytest.mark.asyncio
    async def test_positions_continue_after_existing_documents(self, session, service, account_id):
        dataset, files = await _dataset_with_files(session, account_id)
        await service.create_documents(account_id, dataset.id, [files[0].id])

        documents, _ = await service.create_documents(account_id, dataset.id, [files[0].id])

        assert [d.position for d in documents] == [2]

    @pytest.mark.asyncio
    async def test_custom_rule_is_validated(self, session, service, account_id):
        dataset, files = await _dataset_with_files(session, account_id)

        with pytest.raises(ValidationError):
            await service.create_documents(
                account_id, dataset.id, [files[0].id], process_type="custom", rule={"segment": {"chunk_size": 5}}
            )

    @pytest.mark.asyncio
    async def test_only_unsupported_files(self, session, service, bus, account_id):
        dataset, files = await _dataset_with_files(session, account_id, ("exe",))

        with pytest.raises(ValidationError):
            await service.create_documents(account_id, dataset.id, [files[0].id])
        bus.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_foreign_dataset(self, session, service, account_id):
        dataset, files = await _dataset_with_files(session, uuid.uuid4())

        with pytest.raises(ForbiddenError):
            await service.create_documents(account_id, dataset.id, [files[0].id])

    @pytest.mark.asyncio
    async def test_empty_upload_list(self, service, account_id):
        with pytest.raises(ValidationError):
            await service.create_documents(account_id, uuid.uuid4(), [])


class TestToggleAndDelete:
    @pytest.mark.asyncio
    async def test_disable_publishes_toggle(self, session, service, bus, account_id):
        dataset, _ = await _dataset_with_files(session, account_id)
        document = await _document(session, account_id, dataset)

        updated = await service.update_document_enabled(account_id, dataset.id, document.id, False)

        assert updated.enabled is False
        assert updated.disabled_at is not None
        assert published(bus) == [("document.update_enabled", {"document_id": str(document.id)})]

    @pytest.mark.asyncio
    async def test_toggle_to_same_value_is_rejected(self, session, service, account_id):
        dataset, _ = await _dataset_with_files(session, account_id)
        document = await _document(session, account_id, dataset)

        with pytest.raises(ValidationError):
            await service.update_document_enabled(account_id, dataset.id, document.id, True)

    @pytest.mark.asyncio
    async def test_toggle_requires_completed_document(self, session, service, account_id):
        dataset, _ = await _dataset_with_files(session, account_id)
        document = await _document(session, account_id, dataset, status="indexing", enabled=False)

        with pytest.raises(ValidationError):
            await service.update_document_enabled(account_id, dataset.id, document.id, True)

    @pytest.mark.asyncio
    async def test_document_from_other_dataset(self, session, service, account_id):
        dataset, _ = await _dataset_with_files(session, account_id)
        document = await _document(session, account_id, dataset)

        with pytest.raises(NotFoundError):
            await service.delete_document(account_id, uuid.uuid4(), document.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["parsing", "splitting", "indexing"])
    async def test_delete_while_processing(self, session, service, account_id, status):
        dataset, _ = await _dataset_with_files(session, account_id)
        document = await _document(session, account_id, dataset, status=status, enabled=False)

        with pytest.raises(ValidationError):
            await service.delete_document(account_id, dataset.id, document.id)

    @pytest.mark.asyncio
    async def test_delete_publishes_job(self, session, service, bus, account_id):
        dataset, _ = await _dataset_with_files(session, account_id)
        document = await _document(session, account_id, dataset, status="error", enabled=False)

        await service.delete_document(account_id, dataset.id, document.id)

        assert published(bus) == [
            ("document.delete", {"dataset_id": str(dataset.id), "document_id": str(document.id)})
        ]
