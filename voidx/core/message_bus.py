"""In-process message bus on asyncio queues.

Used by tests and single-process deployments; production wiring uses
``voidx.temporal.message_bus.TemporalMessageBus`` with the same interface.
"""

import asyncio
from typing import Any, Dict, List

from voidx.core.interfaces import MessageHandler
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class InMemoryMessageBus:
    """One queue per topic, drained by the single consumer group registered for it."""

    def __init__(self):
        self._queues: Dict[str, asyncio.Queue] = {}
        self._groups: Dict[str, str] = {}
        self._tasks: List[asyncio.Task] = []

    def _queue(self, topic: str) -> asyncio.Queue:
        if topic not in self._queues:
            self._queues[topic] = asyncio.Queue()
        return self._queues[topic]

    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        await self._queue(topic).put(dict(payload))
        LOGGER.debug(f"Published message to {topic}", extra={"topic": topic})

    async def consume(self, topic: str, group_id: str, handler: MessageHandler) -> None:
        """Start draining ``topic`` in a background task.

        Raises:
            ValueError: If another consumer group already owns the topic
        """
        if self._groups.get(topic, group_id) != group_id:
            raise ValueError(f"Topic {topic} is already consumed by group {self._groups[topic]}")
        self._groups[topic] = group_id
        self._tasks.append(asyncio.create_task(self._drain(topic, group_id, handler)))

    async def _drain(self, topic: str, group_id: str, handler: MessageHandler) -> None:
        queue = self._queue(topic)
        while True:
            payload = await queue.get()
            try:
                await handler(payload)
            except Exception as e:
                # Consumers are idempotent; failures are left for operator-driven retry
                LOGGER.error(
                    f"Consumer failed on {topic}",
                    exc_info=True,
                    extra={"topic": topic, "group_id": group_id, "error": str(e)},
                )
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every published message has been handled."""
        for queue in list(self._queues.values()):
            await queue.join()

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
