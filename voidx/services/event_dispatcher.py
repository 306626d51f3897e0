"""Background job dispatch over the message bus.

HTTP handlers publish through ``EventDispatcher``; workers register
``EventConsumers`` handlers, one consumer group per topic. Delivery is
at-least-once, so every handler tolerates repeated messages.
"""

import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voidx.core.interfaces import MessageBus, MessageHandler
from voidx.services.app_service import AppService
from voidx.services.indexing.indexing_service import IndexingService
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Topic(str, Enum):
    DOCUMENT_BUILD = "document.build"
    DOCUMENT_UPDATE_ENABLED = "document.update_enabled"
    DOCUMENT_DELETE = "document.delete"
    DATASET_DELETE = "dataset.delete"
    APP_AUTO_CREATE = "app.auto_create"


class DocumentPayload(BaseModel):
    document_id: uuid.UUID


class DocumentDeletePayload(BaseModel):
    dataset_id: uuid.UUID
    document_id: uuid.UUID


class DatasetDeletePayload(BaseModel):
    dataset_id: uuid.UUID


class AutoCreateAppPayload(BaseModel):
    name: str
    description: str = ""
    account_id: uuid.UUID


class EventDispatcher:
    """Publishes background jobs."""

    def __init__(self, bus: MessageBus):
        self.bus = bus

    async def _publish(self, topic: Topic, payload: BaseModel) -> None:
        await self.bus.publish(topic.value, payload.model_dump(mode="json"))
        LOGGER.info(f"Dispatched {topic.value}", extra={"topic": topic.value})

    async def build_documents(self, document_ids: Iterable[uuid.UUID]) -> None:
        """One ``document.build`` message per document so documents build in parallel."""
        for document_id in document_ids:
            await self._publish(Topic.DOCUMENT_BUILD, DocumentPayload(document_id=document_id))

    async def update_document_enabled(self, document_id: uuid.UUID) -> None:
        await self._publish(Topic.DOCUMENT_UPDATE_ENABLED, DocumentPayload(document_id=document_id))

    async def delete_document(self, dataset_id: uuid.UUID, document_id: uuid.UUID) -> None:
        await self._publish(Topic.DOCUMENT_DELETE, DocumentDeletePayload(dataset_id=dataset_id, document_id=document_id))

    async def delete_dataset(self, dataset_id: uuid.UUID) -> None:
        await self._publish(Topic.DATASET_DELETE, DatasetDeletePayload(dataset_id=dataset_id))

    async def auto_create_app(self, name: str, description: str, account_id: uuid.UUID) -> None:
        await self._publish(
            Topic.APP_AUTO_CREATE,
            AutoCreateAppPayload(name=name, description=description, account_id=account_id),
        )


class EventConsumers:
    """Topic handlers; each message runs on its own database session.

    Malformed payloads are logged and dropped. Service failures are logged
    and re-raised so the bus can redeliver.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        indexing_factory: Callable[[AsyncSession], IndexingService],
        app_factory: Callable[[AsyncSession], AppService],
        group_prefix: str = "voidx",
    ):
        """
        Args:
            session_maker: Factory for per-message sessions
            indexing_factory: Builds an ``IndexingService`` on a session
            app_factory: Builds an ``AppService`` on a session
            group_prefix: Prefix of consumer group IDs
        """
        self.session_maker = session_maker
        self.indexing_factory = indexing_factory
        self.app_factory = app_factory
        self.group_prefix = group_prefix

    def handlers(self) -> Dict[Topic, MessageHandler]:
        return {
            Topic.DOCUMENT_BUILD: self.handle_document_build,
            Topic.DOCUMENT_UPDATE_ENABLED: self.handle_document_update_enabled,
            Topic.DOCUMENT_DELETE: self.handle_document_delete,
            Topic.DATASET_DELETE: self.handle_dataset_delete,
            Topic.APP_AUTO_CREATE: self.handle_app_auto_create,
        }

    async def register(self, bus: MessageBus) -> None:
        """Start one consumer group per topic on ``bus``."""
        for topic, handler in self.handlers().items():
            group_id = f"{self.group_prefix}.{topic.value}"
            await bus.consume(topic.value, group_id, handler)
            LOGGER.info(f"Registered consumer for {topic.value}", extra={"group_id": group_id})

    async def _handle(
        self,
        topic: Topic,
        payload: Dict[str, Any],
        model: type,
        action: Callable[[AsyncSession, Any], Awaitable[None]],
    ) -> None:
        try:
            message = model.model_validate(payload)
        except PydanticValidationError as e:
            LOGGER.error(f"Dropping malformed {topic.value} message: {str(e)}", extra={"payload": payload})
            return

        try:
            async with self.session_maker() as session:
                await action(session, message)
        except Exception as e:
            LOGGER.error(
                f"Handler for {topic.value} failed: {str(e)}",
                exc_info=True,
                extra={"topic": topic.value, "payload": payload},
            )
            raise

    async def handle_document_build(self, payload: Dict[str, Any]) -> None:
        async def action(session: AsyncSession, message: DocumentPayload) -> None:
            await self.indexing_factory(session).build_documents([message.document_id])

        await self._handle(Topic.DOCUMENT_BUILD, payload, DocumentPayload, action)

    async def handle_document_update_enabled(self, payload: Dict[str, Any]) -> None:
        async def action(session: AsyncSession, message: DocumentPayload) -> None:
            await self.indexing_factory(session).update_document_enabled(message.document_id)

        await self._handle(Topic.DOCUMENT_UPDATE_ENABLED, payload, DocumentPayload, action)

    async def handle_document_delete(self, payload: Dict[str, Any]) -> None:
        async def action(session: AsyncSession, message: DocumentDeletePayload) -> None:
            await self.indexing_factory(session).delete_document(message.dataset_id, message.document_id)

        await self._handle(Topic.DOCUMENT_DELETE, payload, DocumentDeletePayload, action)

    async def handle_dataset_delete(self, payload: Dict[str, Any]) -> None:
        async def action(session: AsyncSession, message: DatasetDeletePayload) -> None:
            await self.indexing_factory(session).delete_dataset(message.dataset_id)

        await self._handle(Topic.DATASET_DELETE, payload, DatasetDeletePayload, action)

    async def handle_app_auto_create(self, payload: Dict[str, Any]) -> None:
        async def action(session: AsyncSession, message: AutoCreateAppPayload) -> None:
            await self.app_factory(session).auto_create_app(message.name, message.description, message.account_id)

        await self._handle(Topic.APP_AUTO_CREATE, payload, AutoCreateAppPayload, action)
