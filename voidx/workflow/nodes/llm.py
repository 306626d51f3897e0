from typing import Any, Dict, List

from pydantic import Field, field_validator

from voidx.workflow.entities import BaseNodeData, NodeType, VariableEntity, VariableType, VariableValue, VariableValueType
from voidx.workflow.nodes.base import BaseNode
from voidx.workflow.template import render_template


LLM_OUTPUT_NAMES = ("response", "prompt_used", "model")


def _llm_outputs() -> List[VariableEntity]:
    return [
        VariableEntity(
            name=name,
            type=VariableType.STRING,
            value=VariableValue(type=VariableValueType.GENERATED, content=""),
        )
        for name in LLM_OUTPUT_NAMES
    ]


class LLMNodeData(BaseNodeData):
    node_type: NodeType = NodeType.LLM
    prompt: str
    model: str = ""
    max_tokens: int = 1000
    temperature: float = 0.7
    inputs: List[VariableEntity] = Field(default_factory=list)
    outputs: List[VariableEntity] = Field(default_factory=_llm_outputs)

    @field_validator("prompt")
    @classmethod
    def check_prompt(cls, prompt: str) -> str:
        if not prompt.strip():
            raise ValueError("LLM node prompt cannot be empty")
        return prompt

    @field_validator("outputs")
    @classmethod
    def ensure_outputs(cls, outputs: List[VariableEntity]) -> List[VariableEntity]:
        declared = {variable.name for variable in outputs}
        return list(outputs) + [variable for variable in _llm_outputs() if variable.name not in declared]


class LLMNode(BaseNode):
    """Renders the prompt over the inputs and returns the model's reply."""

    data_class = LLMNodeData

    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        language_model = self.context.require("language_model")
        prompt = render_template(self.node_data.prompt, inputs)
        params = {"max_tokens": self.node_data.max_tokens, "temperature": self.node_data.temperature}
        if self.node_data.model:
            params["model"] = self.node_data.model

        response = await language_model.complete(prompt, **params)
        outputs = {
            "response": response,
            "prompt_used": prompt,
            "model": self.node_data.model or getattr(language_model, "model", ""),
        }
        # Any other declared output carries the reply text
        for variable in self.node_data.outputs:
            outputs.setdefault(variable.name, response)
        return outputs
