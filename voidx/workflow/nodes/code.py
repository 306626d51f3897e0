from typing import Any, Dict, List, Literal

from pydantic import Field

from voidx.workflow.entities import BaseNodeData, NodeType, VariableEntity
from voidx.workflow.nodes.base import BaseNode
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class CodeNodeData(BaseNodeData):
    node_type: NodeType = NodeType.CODE
    language: Literal["python", "javascript", "go"] = "python"
    code: str = ""
    inputs: List[VariableEntity] = Field(default_factory=list)
    outputs: List[VariableEntity] = Field(default_factory=list)


class CodeNode(BaseNode):
    """Hands the code to the sandbox runner; the runner's map fills the declared outputs."""

    data_class = CodeNodeData

    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        runner = self.context.require("code_runner")
        result = await runner.run(
            self.node_data.language,
            self.node_data.code,
            inputs,
            timeout=self.context.code_timeout,
        )
        LOGGER.debug(
            "Code node finished",
            extra={"node_id": str(self.node_data.id), "language": self.node_data.language},
        )
        return self.fill_outputs(result or {})
