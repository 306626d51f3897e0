"""Base class and run context for workflow nodes."""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar, Dict, Optional, Type

from voidx.core.clock import SystemClock
from voidx.core.interfaces import Clock, CodeRunner, LanguageModel, ToolManager
from voidx.workflow.entities import BaseNodeData, VariableEntity, coerce_value, default_value
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class NodeContext:
    """Collaborators and limits shared by every node of a run.

    ``retrieval_service`` needs a ``search(...)`` coroutine with the
    signature of ``RetrievalService.search``; ``load_workflow`` resolves a
    sub-workflow ID to a validated ``WorkflowGraph``.
    """

    account_id: uuid.UUID
    language_model: Optional[LanguageModel] = None
    tool_manager: Optional[ToolManager] = None
    code_runner: Optional[CodeRunner] = None
    retrieval_service: Any = None
    load_workflow: Optional[Callable[[uuid.UUID], Awaitable[Any]]] = None
    clock: Optional[Clock] = None
    workflow_id: Optional[uuid.UUID] = None
    http_timeout: float = 30.0
    code_timeout: float = 30.0
    queue_size: int = 100
    depth: int = 0
    max_depth: int = 3

    def __post_init__(self):
        if self.clock is None:
            self.clock = SystemClock()

    def require(self, name: str) -> Any:
        collaborator = getattr(self, name)
        if collaborator is None:
            raise RuntimeError(f"Workflow run has no {name} configured")
        return collaborator


class BaseNode(ABC):
    """A node kind: its data model plus how it turns resolved inputs into outputs."""

    data_class: ClassVar[Type[BaseNodeData]]

    def __init__(self, node_data: BaseNodeData, context: NodeContext):
        self.node_data = node_data
        self.context = context

    @abstractmethod
    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Run the node on its resolved inputs and return its outputs."""

    def fill_outputs(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Project ``values`` onto the declared outputs, defaulting missing ones."""
        outputs: Dict[str, Any] = {}
        for variable in self.node_data.get_outputs():
            outputs[variable.name] = self._typed(variable, values.get(variable.name))
        return outputs

    @staticmethod
    def _typed(variable: VariableEntity, value: Any) -> Any:
        if value is None:
            return default_value(variable.type)
        try:
            return coerce_value(variable.type, value)
        except ValueError:
            LOGGER.warning(f"Output {variable.name} does not match {variable.type.value}, keeping raw value")
            return value
