"""Temporal worker for background jobs.

This worker:
- Connects to the Temporal server configured by TEMPORAL_HOST/TEMPORAL_PORT
- Starts one consumer group per message-bus topic
- Runs document indexing, enable toggles, deletions and app auto-creation
"""

import asyncio

from voidx.core.config import settings
from voidx.core.database import async_session_maker, close_database, init_database
from voidx.core.locker import redis_pool
from voidx.core.temporal_client import temporal_manager
from voidx.runtime import build_runtime
from voidx.services.event_dispatcher import Topic
from voidx.utils.logging import get_logger

logger = get_logger(__name__)


async def main():
    """Start the Temporal worker."""
    logger.info(f"Connecting to Temporal server at {settings.temporal_target}")
    await temporal_manager.connect_with_retries()
    logger.info("Successfully connected to Temporal server")

    await init_database(create_tables=False)
    await redis_pool.initialize(settings.redis_url, max_connections=settings.redis.max_connections)

    runtime = build_runtime(settings, async_session_maker)
    await runtime.event_consumers().register(runtime.bus)

    logger.info("=" * 60)
    logger.info("Temporal Worker Started Successfully")
    logger.info("=" * 60)
    logger.info(f"Connected to: {settings.temporal_target}")
    logger.info(f"Task Queue Prefix: {settings.temporal.task_queue_prefix}")
    logger.info(f"Topics: {', '.join(topic.value for topic in Topic)}")
    logger.info("=" * 60)
    logger.info("Worker is now polling for tasks...")
    logger.info("Press Ctrl+C to stop")
    logger.info("=" * 60)

    try:
        await runtime.bus.wait()
    finally:
        await runtime.bus.close()
        await redis_pool.close()
        await close_database()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        raise
