from typing import Any, Dict, List

from pydantic import Field

from voidx.workflow.entities import BaseNodeData, NodeType, VariableEntity
from voidx.workflow.nodes.base import BaseNode


class EndNodeData(BaseNodeData):
    """``outputs`` are the workflow's exposed results, usually references upstream."""

    node_type: NodeType = NodeType.END
    outputs: List[VariableEntity] = Field(default_factory=list)

    def get_inputs(self) -> List[VariableEntity]:
        return list(self.outputs)

    def get_outputs(self) -> List[VariableEntity]:
        return []


class EndNode(BaseNode):
    data_class = EndNodeData

    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        return {variable.name: inputs.get(variable.name) for variable in self.node_data.outputs}
