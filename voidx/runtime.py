"""Process-wide collaborators and service factories.

The API process and the background worker build one ``Runtime`` at
startup; request handlers and message consumers ask it for services bound
to their own database session.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voidx.core.code_runner import HttpCodeRunner
from voidx.core.config import Settings
from voidx.core.interfaces import Clock, CodeRunner, LanguageModel, Locker, MessageBus, ObjectStore, ToolManager, VectorStore
from voidx.core.clock import SystemClock
from voidx.core.llm_client import build_language_model
from voidx.core.locker import RedisLocker, redis_pool
from voidx.core.object_store import SupabaseObjectStore
from voidx.core.temporal_client import get_temporal_client
from voidx.core.tool_manager import ToolRegistry
from voidx.core.vector_store import PgVectorStore
from voidx.services.app_service import AppService
from voidx.services.dataset_service import DatasetService
from voidx.services.document_service import DocumentService
from voidx.services.event_dispatcher import EventConsumers, EventDispatcher
from voidx.services.indexing.indexing_service import IndexingService
from voidx.services.indexing.keyword_extractor import KeywordExtractor
from voidx.services.retrieval.retrieval_service import RetrievalService
from voidx.services.workflow_service import WorkflowService
from voidx.temporal.message_bus import TemporalMessageBus
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Runtime:
    """Holds shared collaborators and builds session-scoped services."""

    def __init__(
        self,
        settings: Settings,
        session_maker: Optional[async_sessionmaker[AsyncSession]],
        language_model: LanguageModel,
        vector_store: VectorStore,
        object_store: ObjectStore,
        locker: Locker,
        bus: MessageBus,
        tool_manager: Optional[ToolManager] = None,
        code_runner: Optional[CodeRunner] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings
        self.session_maker = session_maker
        self.language_model = language_model
        self.vector_store = vector_store
        self.object_store = object_store
        self.locker = locker
        self.bus = bus
        self.tool_manager = tool_manager or ToolRegistry()
        self.code_runner = code_runner
        self.clock = clock or SystemClock()
        self.keyword_extractor = KeywordExtractor()
        self.dispatcher = EventDispatcher(bus)

    def indexing_service(self, session: AsyncSession) -> IndexingService:
        indexing = self.settings.indexing
        return IndexingService(
            session,
            self.vector_store,
            self.object_store,
            self.locker,
            self.language_model.count_tokens,
            keyword_extractor=self.keyword_extractor,
            clock=self.clock,
            batch_size=indexing.vector_batch_size,
            keyword_limit=indexing.segment_keyword_limit,
            lock_ttl=self.settings.redis.lock_ttl_seconds,
            lock_timeout=self.settings.redis.lock_acquire_timeout,
        )

    def retrieval_service(self, session: AsyncSession) -> RetrievalService:
        return RetrievalService(
            session,
            self.vector_store,
            session_maker=self.session_maker,
            keyword_extractor=self.keyword_extractor,
            keyword_top_n=self.settings.indexing.query_keyword_top_n,
        )

    def app_service(self, session: AsyncSession) -> AppService:
        return AppService(session, self.language_model, default_model=self.settings.llm.model)

    def dataset_service(self, session: AsyncSession) -> DatasetService:
        return DatasetService(session, self.dispatcher, self.retrieval_service(session))

    def document_service(self, session: AsyncSession) -> DocumentService:
        return DocumentService(session, self.dispatcher)

    def workflow_service(self, session: AsyncSession) -> WorkflowService:
        workflow = self.settings.workflow
        return WorkflowService(
            session,
            language_model=self.language_model,
            tool_manager=self.tool_manager,
            code_runner=self.code_runner,
            retrieval_service=self.retrieval_service(session),
            clock=self.clock,
            http_timeout=workflow.http_node_timeout,
            code_timeout=workflow.code_runner_timeout,
            queue_size=workflow.event_queue_size,
        )

    def event_consumers(self) -> EventConsumers:
        return EventConsumers(
            self.session_maker,
            indexing_factory=self.indexing_service,
            app_factory=self.app_service,
            group_prefix=self.settings.temporal.task_queue_prefix,
        )


def build_runtime(settings: Settings, session_maker: async_sessionmaker[AsyncSession]) -> Runtime:
    """Wire the production collaborators.

    The Redis pool must already be initialized.
    """
    language_model = build_language_model(settings.llm)
    runtime = Runtime(
        settings=settings,
        session_maker=session_maker,
        language_model=language_model,
        vector_store=PgVectorStore(session_maker, language_model.embed),
        object_store=SupabaseObjectStore(
            settings.storage.url,
            settings.storage.service_role_key,
            settings.storage.bucket,
            timeout=settings.http_timeout,
        ),
        locker=RedisLocker(redis_pool.get_client()),
        bus=TemporalMessageBus(get_temporal_client, task_queue_prefix=settings.temporal.task_queue_prefix),
        code_runner=HttpCodeRunner(settings.workflow.code_runner_url, default_timeout=settings.workflow.code_runner_timeout),
    )
    LOGGER.info("Runtime initialized", extra={"model": settings.llm.model, "environment": settings.environment})
    return runtime
