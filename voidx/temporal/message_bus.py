"""Message bus on Temporal: one task queue per topic, one worker per consumer group."""

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, List

from temporalio.client import Client
from temporalio.worker import Worker

from voidx.core.interfaces import MessageHandler
from voidx.temporal.activities.event_activities import EventActivities
from voidx.temporal.workflows.dispatch_event import DispatchEventWorkflow
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class TemporalMessageBus:
    """Publishes messages as ``DispatchEventWorkflow`` runs on the topic's task queue."""

    def __init__(self, client_provider: Callable[[], Awaitable[Client]], task_queue_prefix: str = "voidx"):
        """
        Args:
            client_provider: Coroutine function returning a connected Temporal client
            task_queue_prefix: Prefix for per-topic task queue names
        """
        self._client_provider = client_provider
        self._prefix = task_queue_prefix
        self._workers: List[Worker] = []
        self._tasks: List[asyncio.Task] = []

    def task_queue(self, topic: str) -> str:
        return f"{self._prefix}.{topic}"

    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        client = await self._client_provider()
        workflow_id = f"{topic}-{uuid.uuid4()}"
        await client.start_workflow(
            DispatchEventWorkflow.run,
            {"topic": topic, "payload": payload},
            id=workflow_id,
            task_queue=self.task_queue(topic),
        )
        LOGGER.info(f"Published {topic}", extra={"workflow_id": workflow_id, "payload": payload})

    async def consume(self, topic: str, group_id: str, handler: MessageHandler) -> None:
        """Start a worker polling the topic's task queue in the background."""
        client = await self._client_provider()
        activities = EventActivities(topic, handler)
        worker = Worker(
            client,
            task_queue=self.task_queue(topic),
            workflows=[DispatchEventWorkflow],
            activities=[activities.handle_event],
            identity=f"{group_id}@{uuid.uuid4().hex[:8]}",
        )
        self._workers.append(worker)
        self._tasks.append(asyncio.create_task(worker.run()))
        LOGGER.info(f"Consumer group {group_id} polling {self.task_queue(topic)}")

    async def wait(self) -> None:
        """Block until every worker stops."""
        await asyncio.gather(*self._tasks)

    async def close(self) -> None:
        for worker in self._workers:
            await worker.shutdown()
        self._workers.clear()
        self._tasks.clear()
