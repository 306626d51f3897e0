"""Document service: create documents for indexing, toggle and delete them.

The heavy lifting runs in background consumers; this service validates
ownership and state, writes the rows the request owns and publishes the job.
"""

import random
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from voidx.core.exceptions import NotFoundError, ValidationError
from voidx.database.models import Document
from voidx.repositories.dataset_repository import DatasetRepository
from voidx.repositories.document_repository import DocumentRepository, ProcessRuleRepository, UploadFileRepository
from voidx.services.base_service import BaseService
from voidx.services.event_dispatcher import EventDispatcher
from voidx.services.indexing.text_splitter import default_process_rule, validate_rule
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

PROCESSING_STATUSES = ("parsing", "splitting", "indexing")
SUPPORTED_EXTENSIONS = ("txt", "md", "markdown", "csv", "html", "htm", "pdf")


def new_batch_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S") + str(random.randint(100000, 999999))


class DocumentService(BaseService):
    """Service for dataset documents."""

    def __init__(self, session: AsyncSession, dispatcher: EventDispatcher):
        """
        Args:
            session: Async database session
            dispatcher: Publisher for build, toggle and delete jobs
        """
        self.document_repo = DocumentRepository(session)
        super().__init__(self.document_repo)
        self.session = session
        self.dispatcher = dispatcher
        self.dataset_repo = DatasetRepository(session)
        self.upload_file_repo = UploadFileRepository(session)
        self.process_rule_repo = ProcessRuleRepository(session)

    async def run(self, *args, **kwargs) -> Any:
        action = kwargs.pop("action", None)

        if action == "create":
            return await self._create_documents(**kwargs)
        elif action == "update_enabled":
            return await self._update_document_enabled(**kwargs)
        elif action == "delete":
            return await self._delete_document(**kwargs)
        else:
            raise ValidationError(f"Unknown action: {action}")

    def validate(self, *args, **kwargs):
        if kwargs.get("action") == "create":
            if not kwargs.get("upload_file_ids"):
                raise ValidationError("upload_file_ids cannot be empty")
            if len(kwargs["upload_file_ids"]) > 10:
                raise ValidationError("At most 10 files can be added at once")
            if kwargs.get("process_type", "automatic") not in ("automatic", "custom"):
                raise ValidationError("process_type must be automatic or custom")

    async def create_documents(
        self,
        account_id: uuid.UUID,
        dataset_id: uuid.UUID,
        upload_file_ids: List[uuid.UUID],
        process_type: str = "automatic",
        rule: Optional[Dict[str, Any]] = None,
    ) -> Tuple[List[Document], str]:
        """Create waiting documents for uploaded files and publish their build jobs.

        Returns:
            Tuple of (created documents, batch ID)

        Raises:
            ValidationError: If no usable file is given or the rule is invalid
            NotFoundError: If the dataset does not exist
            ForbiddenError: If the dataset belongs to another account
        """
        return await self.execute(
            action="create",
            account_id=account_id,
            dataset_id=dataset_id,
            upload_file_ids=upload_file_ids,
            process_type=process_type,
            rule=rule,
        )

    async def update_document_enabled(
        self, account_id: uuid.UUID, dataset_id: uuid.UUID, document_id: uuid.UUID, enabled: bool
    ) -> Document:
        """Flip ``enabled`` on a completed document and publish the toggle job."""
        return await self.execute(
            action="update_enabled",
            account_id=account_id,
            dataset_id=dataset_id,
            document_id=document_id,
            enabled=enabled,
        )

    async def delete_document(self, account_id: uuid.UUID, dataset_id: uuid.UUID, document_id: uuid.UUID) -> None:
        """Publish the delete job for a document that is not being processed."""
        return await self.execute(
            action="delete", account_id=account_id, dataset_id=dataset_id, document_id=document_id
        )

    async def _get_document(self, account_id: uuid.UUID, dataset_id: uuid.UUID, document_id: uuid.UUID) -> Document:
        document = await self.document_repo.get_owned(document_id, account_id)
        if document.dataset_id != dataset_id:
            raise NotFoundError(f"Document {document_id} is not in dataset {dataset_id}")
        return document

    async def _create_documents(
        self,
        account_id: uuid.UUID,
        dataset_id: uuid.UUID,
        upload_file_ids: Iterable[uuid.UUID],
        process_type: str = "automatic",
        rule: Optional[Dict[str, Any]] = None,
    ) -> Tuple[List[Document], str]:
        await self.dataset_repo.get_owned(dataset_id, account_id)

        upload_files = [
            upload_file
            for upload_file in await self.upload_file_repo.get_by_ids(upload_file_ids)
            if upload_file.account_id == account_id
            and upload_file.extension.lower().lstrip(".") in SUPPORTED_EXTENSIONS
        ]
        if not upload_files:
            raise ValidationError("No supported uploaded file was given")

        rule = default_process_rule() if process_type == "automatic" else validate_rule(rule or {})
        process_rule = await self.process_rule_repo.create(
            account_id=account_id,
            dataset_id=dataset_id,
            mode=process_type,
            rule=rule,
        )

        batch = new_batch_id()
        position = await self.document_repo.get_latest_position(dataset_id)
        documents: List[Document] = []
        for upload_file in upload_files:
            position += 1
            documents.append(
                await self.document_repo.create(
                    account_id=account_id,
                    dataset_id=dataset_id,
                    upload_file_id=upload_file.id,
                    process_rule_id=process_rule.id,
                    batch=batch,
                    name=upload_file.name,
                    position=position,
                    status="waiting",
                )
            )

        await self.dispatcher.build_documents([document.id for document in documents])
        LOGGER.info(
            f"Created {len(documents)} document(s) for indexing",
            extra={"dataset_id": str(dataset_id), "batch": batch},
        )
        return documents, batch

    async def _update_document_enabled(
        self, account_id: uuid.UUID, dataset_id: uuid.UUID, document_id: uuid.UUID, enabled: bool
    ) -> Document:
        document = await self._get_document(account_id, dataset_id, document_id)
        if document.status != "completed":
            raise ValidationError("Only completed documents can be enabled or disabled")
        if document.enabled == enabled:
            raise ValidationError(f"Document is already {'enabled' if enabled else 'disabled'}")

        document = await self.document_repo.update(
            document.id,
            enabled=enabled,
            disabled_at=None if enabled else datetime.now(timezone.utc),
        )
        await self.dispatcher.update_document_enabled(document.id)
        return document

    async def _delete_document(self, account_id: uuid.UUID, dataset_id: uuid.UUID, document_id: uuid.UUID) -> None:
        document = await self._get_document(account_id, dataset_id, document_id)
        if document.status in PROCESSING_STATUSES:
            raise ValidationError("Document is being processed and cannot be deleted yet")
        await self.dispatcher.delete_document(dataset_id, document.id)
