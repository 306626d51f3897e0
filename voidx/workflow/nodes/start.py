from typing import Any, Dict, List

from pydantic import Field, field_validator

from voidx.workflow.entities import BaseNodeData, NodeType, VariableEntity, coerce_value, default_value
from voidx.workflow.nodes.base import BaseNode


class StartNodeData(BaseNodeData):
    """Declares the workflow parameters; they are the node's outputs."""

    node_type: NodeType = NodeType.START
    inputs: List[VariableEntity] = Field(default_factory=list)

    @field_validator("inputs")
    @classmethod
    def check_inputs(cls, inputs: List[VariableEntity]) -> List[VariableEntity]:
        names = set()
        for variable in inputs:
            if variable.is_ref:
                raise ValueError(f"Start node input {variable.name} cannot reference another node")
            if variable.name in names:
                raise ValueError(f"Duplicate start node input {variable.name}")
            names.add(variable.name)
        return inputs

    def get_inputs(self) -> List[VariableEntity]:
        return []

    def get_outputs(self) -> List[VariableEntity]:
        return list(self.inputs)


class StartNode(BaseNode):
    data_class = StartNodeData

    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        outputs: Dict[str, Any] = {}
        for variable in self.node_data.inputs:
            value = inputs.get(variable.name)
            if value is None:
                if variable.required:
                    raise ValueError(f"Workflow input {variable.name} is required")
                outputs[variable.name] = default_value(variable.type)
                continue
            outputs[variable.name] = coerce_value(variable.type, value)
        return outputs
