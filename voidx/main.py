"""ASGI application: wires the runtime, routers and error handlers."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from voidx.api.v1.endpoints import health
from voidx.api.v1.errors import register_exception_handlers
from voidx.api.v1.router import api_router
from voidx.core.config import settings
from voidx.core.database import async_session_maker, close_database, init_database
from voidx.core.locker import redis_pool
from voidx.runtime import build_runtime
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__, level=settings.log_level)


class ServiceInfo(BaseModel):
    message: str = Field(..., description="Human readable status")
    version: str = Field(..., description="Deployed voidx version")
    docs: str = Field(..., description="Swagger UI path")
    health: str = Field(..., description="Health probe path")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Bootstrap the schema and the runtime; tear both down on shutdown.

    A runtime that fails to build leaves ``app.state.runtime`` as None and
    every API call answers 503 until the process is restarted.
    """
    if not settings.llm.api_key:
        LOGGER.error("OPENROUTER_API_KEY is missing; model calls will fail")

    LOGGER.info(
        "Booting voidx",
        extra={"app_name": settings.app_name, "version": settings.app_version, "environment": settings.environment},
    )

    try:
        await asyncio.wait_for(init_database(create_tables=True), timeout=settings.db_init_timeout)
    except asyncio.TimeoutError:
        LOGGER.error(f"Schema bootstrap gave up after {settings.db_init_timeout}s")
    except Exception as e:
        LOGGER.error(f"Schema bootstrap failed: {e}", exc_info=True)

    app.state.runtime = None
    try:
        await redis_pool.initialize(settings.redis_url, max_connections=settings.redis.max_connections)
        app.state.runtime = build_runtime(settings, async_session_maker)
    except Exception as e:
        LOGGER.error(
            "Runtime initialization failed; API calls will answer 503",
            exc_info=True,
            extra={"error": str(e)},
        )

    yield

    LOGGER.info("Stopping voidx")
    runtime = app.state.runtime
    if runtime is not None:
        try:
            await runtime.bus.close()
        except Exception as e:
            LOGGER.error("Error closing message bus", exc_info=True, extra={"error": str(e)})
    await redis_pool.close()
    await close_database()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="LLM application platform: knowledge bases, hybrid retrieval and workflow graphs",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Echo ``X-Correlation-ID`` back, minting one when the caller sent none."""
    request.state.correlation_id = request.headers.get("X-Correlation-ID") or str(uuid4())
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = request.state.correlation_id
    return response


# Registered last so it wraps the correlation middleware too
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)

register_exception_handlers(app)

app.include_router(api_router, prefix=settings.api_v1_prefix)
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/", response_model=ServiceInfo, tags=["Root"], operation_id="get_service_info")
async def root() -> ServiceInfo:
    return ServiceInfo(message="voidx is running", version=settings.app_version, docs="/docs", health="/health")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "voidx.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
