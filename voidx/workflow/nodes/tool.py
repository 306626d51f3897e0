import json
from typing import Any, Dict, List, Literal

from pydantic import Field, field_validator

from voidx.core.tool_manager import tool_name
from voidx.workflow.entities import BaseNodeData, NodeType, VariableEntity, VariableType, VariableValue, VariableValueType
from voidx.workflow.nodes.base import BaseNode


def _default_output() -> List[VariableEntity]:
    return [
        VariableEntity(
            name="output",
            type=VariableType.STRING,
            value=VariableValue(type=VariableValueType.GENERATED, content=""),
        )
    ]


class ToolNodeData(BaseNodeData):
    node_type: NodeType = NodeType.TOOL
    type: Literal["builtin_tool", "api_tool"] = "builtin_tool"
    provider_id: str
    tool_id: str
    params: Dict[str, Any] = Field(default_factory=dict)
    inputs: List[VariableEntity] = Field(default_factory=list)
    outputs: List[VariableEntity] = Field(default_factory=_default_output)

    @field_validator("outputs")
    @classmethod
    def single_output(cls, outputs: List[VariableEntity]) -> List[VariableEntity]:
        if len(outputs) > 1:
            raise ValueError("Tool node has exactly one output")
        return outputs or _default_output()


class ToolNode(BaseNode):
    """Invokes a builtin or API tool; node params are overridden by resolved inputs."""

    data_class = ToolNodeData

    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        tool_manager = self.context.require("tool_manager")
        args = {**self.node_data.params, **inputs}
        result = await tool_manager.invoke(
            tool_name(self.node_data.provider_id, self.node_data.tool_id),
            json.dumps(args, ensure_ascii=False, default=str),
        )
        return {self.node_data.outputs[0].name: result}
