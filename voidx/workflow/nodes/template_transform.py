from typing import Any, Dict, List

from pydantic import Field, field_validator

from voidx.workflow.entities import BaseNodeData, NodeType, VariableEntity, VariableType, VariableValue, VariableValueType
from voidx.workflow.nodes.base import BaseNode
from voidx.workflow.template import render_template


def _default_output() -> List[VariableEntity]:
    return [
        VariableEntity(
            name="output",
            type=VariableType.STRING,
            value=VariableValue(type=VariableValueType.GENERATED, content=""),
        )
    ]


class TemplateTransformNodeData(BaseNodeData):
    node_type: NodeType = NodeType.TEMPLATE_TRANSFORM
    template: str = ""
    inputs: List[VariableEntity] = Field(default_factory=list)
    outputs: List[VariableEntity] = Field(default_factory=_default_output)

    @field_validator("outputs")
    @classmethod
    def single_output(cls, outputs: List[VariableEntity]) -> List[VariableEntity]:
        if len(outputs) > 1:
            raise ValueError("Template transform node has exactly one output")
        return outputs or _default_output()


class TemplateTransformNode(BaseNode):
    data_class = TemplateTransformNodeData

    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        rendered = render_template(self.node_data.template, inputs)
        return {self.node_data.outputs[0].name: rendered}
