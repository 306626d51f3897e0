"""Activity wrapping a message-bus consumer handler."""

from temporalio import activity

from voidx.core.interfaces import MessageHandler
from voidx.temporal.workflows.dispatch_event import HANDLE_EVENT_ACTIVITY


class EventActivities:
    """Binds ``handle_event`` to the handler of one topic."""

    def __init__(self, topic: str, handler: MessageHandler):
        self.topic = topic
        self._handler = handler

    @activity.defn(name=HANDLE_EVENT_ACTIVITY)
    async def handle_event(self, message: dict) -> None:
        """Invoke the topic handler with the message payload.

        Args:
            message: ``{"topic": str, "payload": dict}`` as published
        """
        topic = message.get("topic")
        if topic != self.topic:
            activity.logger.warning(f"Ignoring message for {topic} on the {self.topic} queue")
            return
        activity.logger.info(
            f"Handling {topic} message (attempt {activity.info().attempt})",
            extra={"payload": message.get("payload")},
        )
        await self._handler(message.get("payload") or {})
