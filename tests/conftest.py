"""Pytest configuration and shared fixtures.

Database tests run against in-memory SQLite through aiosqlite; the
pgvector-backed ``vector_points`` table is replaced by ``FakeVectorStore``.
"""

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from voidx.core.config import settings
from voidx.core.database import Base, get_async_session, get_session_maker
from voidx.core.message_bus import InMemoryMessageBus
from voidx.database import models  # noqa: F401
from voidx.main import app
from voidx.runtime import Runtime
from voidx.services.indexing.indexing_service import IndexingService

from helpers import FakeClock, FakeCodeRunner, FakeLanguageModel, FakeLocker, FakeObjectStore, FakeVectorStore

SQL_TABLES = [table for table in Base.metadata.sorted_tables if table.name != "vector_points"]


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, tables=SQL_TABLES))
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def account_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def vector_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def language_model() -> FakeLanguageModel:
    return FakeLanguageModel()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def locker() -> FakeLocker:
    return FakeLocker()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def code_runner() -> FakeCodeRunner:
    return FakeCodeRunner()


@pytest.fixture
def indexing_service(session, vector_store, object_store, locker, language_model, clock) -> IndexingService:
    return IndexingService(
        session,
        vector_store,
        object_store,
        locker,
        language_model.count_tokens,
        clock=clock,
        lock_timeout=1.0,
    )


@pytest.fixture
def runtime(vector_store, language_model, object_store, locker, code_runner, clock) -> Runtime:
    """Runtime on fakes; bookkeeping runs inline because there is no session maker."""
    return Runtime(
        settings=settings,
        session_maker=None,
        language_model=language_model,
        vector_store=vector_store,
        object_store=object_store,
        locker=locker,
        bus=InMemoryMessageBus(),
        code_runner=code_runner,
        clock=clock,
    )


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest_asyncio.fixture
async def client(session_maker, runtime):
    """HTTP client bound to the app without running its lifespan."""

    async def override_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.state.runtime = runtime
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client
    app.state.runtime = None
    await runtime.bus.close()
