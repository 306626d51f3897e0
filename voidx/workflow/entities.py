"""Workflow graph entities: variables, nodes, edges, run state and events.

Nodes and edges reference each other only by ID; the validator and the
executor build forward and reverse adjacency maps from the edge list.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

VARIABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
WORKFLOW_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
DESCRIPTION_MAX_LENGTH = 1024


class NodeType(str, Enum):
    START = "start"
    END = "end"
    LLM = "llm"
    TOOL = "tool"
    CODE = "code"
    DATASET_RETRIEVAL = "dataset_retrieval"
    HTTP_REQUEST = "http_request"
    TEMPLATE_TRANSFORM = "template_transform"
    QUESTION_CLASSIFIER = "question_classifier"
    ITERATION = "iteration"


class VariableType(str, Enum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOLEAN = "boolean"
    LIST_STRING = "list[string]"
    LIST_INT = "list[int]"
    LIST_FLOAT = "list[float]"
    LIST_BOOLEAN = "list[boolean]"

    @property
    def is_list(self) -> bool:
        return self.value.startswith("list[")

    @property
    def item_type(self) -> "VariableType":
        return VariableType(self.value[5:-1]) if self.is_list else self


class VariableValueType(str, Enum):
    REF = "ref"
    LITERAL = "literal"
    GENERATED = "generated"


def default_value(var_type: VariableType) -> Any:
    """Zero value of a variable type."""
    if var_type.is_list:
        return []
    return {
        VariableType.STRING: "",
        VariableType.INT: 0,
        VariableType.FLOAT: 0.0,
        VariableType.BOOLEAN: False,
    }[var_type]


def _coerce_scalar(var_type: VariableType, value: Any) -> Any:
    if var_type == VariableType.STRING:
        return value if isinstance(value, str) else str(value)
    if var_type == VariableType.INT:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"{value!r} is not an integer")
        return int(value)
    if var_type == VariableType.FLOAT:
        return float(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no", ""):
            return False
        raise ValueError(f"{value!r} is not a boolean")
    return bool(value)


def coerce_value(var_type: VariableType, value: Any) -> Any:
    """Convert ``value`` to ``var_type``; ``None`` becomes the zero value.

    Raises:
        ValueError: If the value cannot be converted
    """
    if value is None:
        return default_value(var_type)
    if var_type.is_list:
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"Expected a list for {var_type.value}, got {type(value).__name__}")
        try:
            return [_coerce_scalar(var_type.item_type, item) for item in value]
        except (TypeError, ValueError) as e:
            raise ValueError(f"Cannot convert {value!r} to {var_type.value}: {e}") from e
    try:
        return _coerce_scalar(var_type, value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Cannot convert {value!r} to {var_type.value}: {e}") from e


class VariableContent(BaseModel):
    """Reference to an output variable of another node."""

    ref_node_id: Optional[uuid.UUID] = None
    ref_var_name: str = ""


class VariableValue(BaseModel):
    type: VariableValueType = VariableValueType.LITERAL
    content: Any = None

    @model_validator(mode="after")
    def parse_ref_content(self) -> "VariableValue":
        if self.type == VariableValueType.REF and not isinstance(self.content, VariableContent):
            self.content = VariableContent.model_validate(self.content or {})
        return self


class VariableEntity(BaseModel):
    """Typed input or output variable of a node."""

    name: str
    description: str = ""
    required: bool = True
    type: VariableType = VariableType.STRING
    value: VariableValue = Field(default_factory=VariableValue)
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def check_name(cls, name: str) -> str:
        if not VARIABLE_NAME_PATTERN.match(name or ""):
            raise ValueError("Variable names may only contain letters, digits and underscores and must not start with a digit")
        return name

    @field_validator("description")
    @classmethod
    def truncate_description(cls, description: str) -> str:
        return (description or "")[:DESCRIPTION_MAX_LENGTH]

    @property
    def is_ref(self) -> bool:
        return self.value.type == VariableValueType.REF


class Position(BaseModel):
    x: float = 0
    y: float = 0


class BaseNodeData(BaseModel):
    """Fields shared by every node kind; subclasses add their payload."""

    model_config = ConfigDict(extra="ignore")

    id: uuid.UUID
    node_type: NodeType
    title: str = ""
    description: str = ""
    position: Position = Field(default_factory=Position)

    def get_inputs(self) -> List[VariableEntity]:
        """Variables resolved when the node runs."""
        return list(getattr(self, "inputs", []) or [])

    def get_outputs(self) -> List[VariableEntity]:
        """Variables later nodes may reference."""
        return list(getattr(self, "outputs", []) or [])


class BaseEdgeData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: uuid.UUID
    source: uuid.UUID
    target: uuid.UUID
    source_type: NodeType
    target_type: NodeType
    source_handle_id: Optional[str] = None


class WorkflowGraph(BaseModel):
    """A validated graph: typed nodes in input order plus edges."""

    nodes: List[BaseNodeData] = Field(default_factory=list)
    edges: List[BaseEdgeData] = Field(default_factory=list)

    def node_map(self) -> Dict[uuid.UUID, BaseNodeData]:
        return {node.id: node for node in self.nodes}

    def start_node(self) -> BaseNodeData:
        return next(node for node in self.nodes if node.node_type == NodeType.START)

    def end_node(self) -> BaseNodeData:
        return next(node for node in self.nodes if node.node_type == NodeType.END)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form persisted as ``draft_graph``/``graph``."""
        return {
            "nodes": [node.model_dump(mode="json") for node in self.nodes],
            "edges": [edge.model_dump(mode="json") for edge in self.edges],
        }


@dataclass
class GraphValidationError:
    """A graph rejected by the validator; returned, not raised."""

    kind: str
    message: str

    def __str__(self) -> str:
        return self.message


class NodeStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class NodeResult(BaseModel):
    """Outcome of one node in a run."""

    node_id: uuid.UUID
    node_type: NodeType
    title: str = ""
    status: NodeStatus = NodeStatus.RUNNING
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    error: str = ""
    latency: float = 0.0


class NodeEvent(BaseModel):
    """One node transition emitted on the debug stream."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    node_id: uuid.UUID
    node_type: NodeType
    title: str = ""
    status: NodeStatus
    inputs: Optional[Dict[str, Any]] = None
    outputs: Optional[Dict[str, Any]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    elapsed_time: float = 0.0
    error: Optional[str] = None


class WorkflowRunResult(BaseModel):
    """Final state of a run, available once the stream is exhausted or closed."""

    status: WorkflowStatus = WorkflowStatus.RUNNING
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    node_results: List[NodeResult] = Field(default_factory=list)
    events: List[NodeEvent] = Field(default_factory=list)
    latency: float = 0.0
    error: str = ""
