"""Workflow that delivers one message-bus message to its topic's consumer.

Each topic has its own task queue; the worker polling that queue registers
a ``handle_event`` activity bound to the topic's handler, so the activity
executes on the consumer group that owns the topic.
"""

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

HANDLE_EVENT_ACTIVITY = "handle_event"


@workflow.defn
class DispatchEventWorkflow:
    """Runs the topic handler once, retrying transient activity failures."""

    @workflow.run
    async def run(self, message: dict) -> None:
        """
        Args:
            message: ``{"topic": str, "payload": dict}``
        """
        workflow.logger.info(f"Dispatching message on topic {message.get('topic')}")
        await workflow.execute_activity(
            HANDLE_EVENT_ACTIVITY,
            message,
            start_to_close_timeout=timedelta(minutes=30),
            retry_policy=RetryPolicy(
                initial_interval=timedelta(seconds=2),
                maximum_attempts=3,
            ),
        )
