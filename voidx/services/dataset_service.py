"""Dataset service: knowledge-base CRUD, deletion jobs and hit testing."""

import uuid
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.core.exceptions import ConflictError, ValidationError
from voidx.database.models import Dataset, DatasetQuery
from voidx.repositories.dataset_repository import DatasetQueryRepository, DatasetRepository
from voidx.repositories.segment_repository import SegmentRepository
from voidx.services.base_service import BaseService
from voidx.services.event_dispatcher import EventDispatcher
from voidx.services.retrieval.retrieval_service import RetrievalService
from voidx.services.retrieval.retrievers import RetrievalSource
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class DatasetService(BaseService):
    """Service for datasets owned by an account."""

    def __init__(self, session: AsyncSession, dispatcher: EventDispatcher, retrieval_service: RetrievalService):
        self.dataset_repo = DatasetRepository(session)
        super().__init__(self.dataset_repo)
        self.session = session
        self.dispatcher = dispatcher
        self.retrieval_service = retrieval_service
        self.query_repo = DatasetQueryRepository(session)
        self.segment_repo = SegmentRepository(session)

    async def run(self, *args, **kwargs) -> Any:
        action = kwargs.pop("action", None)

        if action == "create":
            return await self._create_dataset(**kwargs)
        elif action == "delete":
            dataset = await self.dataset_repo.get_owned(kwargs["dataset_id"], kwargs["account_id"])
            await self.dispatcher.delete_dataset(dataset.id)
            return None
        elif action == "hit_testing":
            return await self._hit_testing(**kwargs)
        elif action == "recent_queries":
            dataset = await self.dataset_repo.get_owned(kwargs["dataset_id"], kwargs["account_id"])
            return await self.query_repo.get_recent(dataset.id, limit=kwargs.get("limit", 10))
        else:
            raise ValidationError(f"Unknown action: {action}")

    def validate(self, *args, **kwargs):
        action = kwargs.get("action")
        if action == "create" and not (kwargs.get("name") or "").strip():
            raise ValidationError("Dataset name is required")
        if action == "hit_testing" and not (kwargs.get("query") or "").strip():
            raise ValidationError("Query cannot be empty")

    async def create_dataset(
        self, account_id: uuid.UUID, name: str, description: str = "", icon: str = ""
    ) -> Dataset:
        """Create a dataset; names are unique per account.

        Raises:
            ConflictError: If the account already has a dataset with this name
        """
        return await self.execute(action="create", account_id=account_id, name=name, description=description, icon=icon)

    async def delete_dataset(self, account_id: uuid.UUID, dataset_id: uuid.UUID) -> None:
        """Publish the cascade delete of a dataset."""
        return await self.execute(action="delete", account_id=account_id, dataset_id=dataset_id)

    async def hit_testing(
        self,
        account_id: uuid.UUID,
        dataset_id: uuid.UUID,
        query: str,
        retrieval_strategy: str = "semantic",
        k: int = 4,
        score: float = 0.0,
    ) -> List[Dict[str, Any]]:
        """Search one dataset the way an app would and describe each hit."""
        return await self.execute(
            action="hit_testing",
            account_id=account_id,
            dataset_id=dataset_id,
            query=query,
            retrieval_strategy=retrieval_strategy,
            k=k,
            score=score,
        )

    async def get_recent_queries(self, account_id: uuid.UUID, dataset_id: uuid.UUID, limit: int = 10) -> List[DatasetQuery]:
        return await self.execute(action="recent_queries", account_id=account_id, dataset_id=dataset_id, limit=limit)

    async def _create_dataset(self, account_id: uuid.UUID, name: str, description: str = "", icon: str = "") -> Dataset:
        name = name.strip()
        existing = await self.session.execute(
            select(Dataset.id).where(Dataset.account_id == account_id, Dataset.name == name)
        )
        if existing.first() is not None:
            raise ConflictError(f"A dataset named {name} already exists")

        dataset = await self.dataset_repo.create(account_id=account_id, name=name, description=description, icon=icon)
        LOGGER.info("Dataset created", extra={"dataset_id": str(dataset.id), "account_id": str(account_id)})
        return dataset

    async def _hit_testing(
        self,
        account_id: uuid.UUID,
        dataset_id: uuid.UUID,
        query: str,
        retrieval_strategy: str = "semantic",
        k: int = 4,
        score: float = 0.0,
    ) -> List[Dict[str, Any]]:
        dataset = await self.dataset_repo.get_owned(dataset_id, account_id)
        documents = await self.retrieval_service.search(
            account_id=account_id,
            dataset_ids=[dataset.id],
            query=query,
            retrieval_strategy=retrieval_strategy,
            k=k,
            score=score,
            retrieval_source=RetrievalSource.HIT_TESTING.value,
        )

        segments = {
            segment.id: segment
            for segment in await self.segment_repo.get_by_ids(uuid.UUID(d.metadata["segment_id"]) for d in documents)
        }
        hits: List[Dict[str, Any]] = []
        for document in documents:
            segment = segments.get(uuid.UUID(document.metadata["segment_id"]))
            hits.append(
                {
                    "segment_id": document.metadata["segment_id"],
                    "document_id": document.metadata["document_id"],
                    "content": document.page_content,
                    "score": float(document.metadata.get("score") or 0.0),
                    "retrieval_method": document.metadata.get("retrieval_method", retrieval_strategy),
                    "position": segment.position if segment else None,
                    "keywords": list(segment.keywords or []) if segment else [],
                    "hit_count": segment.hit_count if segment else 0,
                }
            )
        return hits
