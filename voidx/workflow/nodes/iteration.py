import dataclasses
import json
import uuid
from typing import Any, Dict, List

from pydantic import Field, field_validator

from voidx.workflow.entities import (
    BaseNodeData,
    NodeType,
    VariableEntity,
    VariableType,
    VariableValue,
    VariableValueType,
    WorkflowStatus,
)
from voidx.workflow.nodes.base import BaseNode
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _inputs_input() -> List[VariableEntity]:
    return [VariableEntity(name="inputs", type=VariableType.LIST_STRING, required=True)]


def _outputs_output() -> List[VariableEntity]:
    return [
        VariableEntity(
            name="outputs",
            type=VariableType.LIST_STRING,
            value=VariableValue(type=VariableValueType.GENERATED, content=[]),
        )
    ]


class IterationNodeData(BaseNodeData):
    node_type: NodeType = NodeType.ITERATION
    workflow_ids: List[uuid.UUID] = Field(default_factory=list)
    inputs: List[VariableEntity] = Field(default_factory=_inputs_input)
    outputs: List[VariableEntity] = Field(default_factory=_outputs_output)

    @field_validator("workflow_ids")
    @classmethod
    def dedupe_workflows(cls, workflow_ids: List[uuid.UUID]) -> List[uuid.UUID]:
        return list(dict.fromkeys(workflow_ids))

    @field_validator("inputs")
    @classmethod
    def check_inputs(cls, inputs: List[VariableEntity]) -> List[VariableEntity]:
        if len(inputs) != 1:
            raise ValueError("Iteration node takes exactly one input")
        variable = inputs[0]
        if variable.name != "inputs" or not variable.type.is_list or not variable.required:
            raise ValueError("Iteration input must be a required list variable named inputs")
        return inputs

    @field_validator("outputs")
    @classmethod
    def fixed_outputs(cls, outputs: List[VariableEntity]) -> List[VariableEntity]:
        return _outputs_output()


class IterationNode(BaseNode):
    """Runs the bound sub-workflow once per element; failed elements are dropped."""

    data_class = IterationNodeData

    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        # Imported here; the executor imports the node registry
        from voidx.workflow.executor import WorkflowExecutor

        if len(self.node_data.workflow_ids) != 1:
            raise ValueError("Iteration node must bind exactly one workflow")
        if self.context.depth >= self.context.max_depth:
            raise ValueError(f"Sub-workflow nesting exceeds {self.context.max_depth} levels")

        workflow_id = self.node_data.workflow_ids[0]
        load_workflow = self.context.require("load_workflow")
        graph = await load_workflow(workflow_id)
        start_inputs = graph.start_node().get_outputs()
        if len(start_inputs) != 1:
            raise ValueError("Sub-workflow start node must declare exactly one input")
        param_name = start_inputs[0].name

        child_context = dataclasses.replace(self.context, depth=self.context.depth + 1, workflow_id=workflow_id)
        outputs: List[str] = []
        for index, element in enumerate(inputs.get("inputs") or []):
            result = await WorkflowExecutor(graph, child_context).run({param_name: element})
            if result.status != WorkflowStatus.SUCCEEDED:
                LOGGER.warning(
                    f"Sub-workflow run failed for element {index}, dropping it: {result.error}",
                    extra={"node_id": str(self.node_data.id), "workflow_id": str(workflow_id)},
                )
                continue
            outputs.append(json.dumps(result.outputs, ensure_ascii=False, default=str))
        return {"outputs": outputs}
