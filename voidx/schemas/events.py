from enum import Enum
import json
from typing import Any, Dict

from pydantic import BaseModel, Field

from voidx.workflow.entities import NodeEvent


class SSEEventType(str, Enum):
    WORKFLOW_STARTED = "workflow:started"
    NODE = "workflow:node"
    WORKFLOW_COMPLETED = "workflow:completed"
    WORKFLOW_FAILED = "workflow:failed"


class SSEEvent(BaseModel):
    event_type: SSEEventType
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_node_event(cls, event: NodeEvent) -> "SSEEvent":
        return cls(event_type=SSEEventType.NODE, data=event.model_dump(mode="json"))

    def format(self) -> str:
        """Serialize as one ``text/event-stream`` frame."""
        return f"event: {self.event_type.value}\ndata: {json.dumps(self.data, ensure_ascii=False)}\n\n"
