"""Liveness probe covering PostgreSQL and Redis."""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from voidx.core.config import settings
from voidx.core.database import db_client
from voidx.core.locker import redis_pool

router = APIRouter()


class HealthStatus(BaseModel):
    status: str = Field(..., description="healthy, or degraded when a backing store is down")
    version: str
    service: str
    database: str = Field(default="unknown")
    redis: str = Field(default="unknown")


@router.get("/", response_model=HealthStatus, summary="Service health", operation_id="get_health")
async def health_check() -> HealthStatus:
    database = (await db_client.health_check())["status"]
    redis = "healthy" if await redis_pool.health_check() else "unhealthy"
    return HealthStatus(
        status="healthy" if database == redis == "healthy" else "degraded",
        version=settings.app_version,
        service=settings.app_name,
        database=database,
        redis=redis,
    )
