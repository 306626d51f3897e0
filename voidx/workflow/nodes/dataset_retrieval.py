import uuid
from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator

from voidx.workflow.entities import (
    BaseNodeData,
    NodeType,
    VariableEntity,
    VariableType,
    VariableValue,
    VariableValueType,
)
from voidx.workflow.nodes.base import BaseNode


class RetrievalConfig(BaseModel):
    retrieval_strategy: str = "semantic"
    k: int = Field(default=4, ge=1, le=10)
    score: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("retrieval_strategy")
    @classmethod
    def check_strategy(cls, strategy: str) -> str:
        # Older graphs call full-text retrieval "keyword"
        strategy = "full_text" if strategy == "keyword" else strategy
        if strategy not in ("full_text", "semantic", "hybrid"):
            raise ValueError(f"Unknown retrieval strategy: {strategy}")
        return strategy


def _query_input() -> List[VariableEntity]:
    return [VariableEntity(name="query", type=VariableType.STRING, required=True)]


def _combined_output() -> List[VariableEntity]:
    return [
        VariableEntity(
            name="combine_documents",
            type=VariableType.STRING,
            value=VariableValue(type=VariableValueType.GENERATED, content=""),
        )
    ]


class DatasetRetrievalNodeData(BaseNodeData):
    node_type: NodeType = NodeType.DATASET_RETRIEVAL
    dataset_ids: List[uuid.UUID] = Field(default_factory=list)
    retrieval_config: RetrievalConfig = Field(default_factory=RetrievalConfig)
    inputs: List[VariableEntity] = Field(default_factory=_query_input)
    outputs: List[VariableEntity] = Field(default_factory=_combined_output)

    @field_validator("inputs")
    @classmethod
    def check_inputs(cls, inputs: List[VariableEntity]) -> List[VariableEntity]:
        if len(inputs) != 1:
            raise ValueError("Dataset retrieval node takes exactly one input")
        query = inputs[0]
        if query.name != "query" or query.type != VariableType.STRING or not query.required:
            raise ValueError("Dataset retrieval input must be a required string named query")
        return inputs

    @field_validator("outputs")
    @classmethod
    def fixed_outputs(cls, outputs: List[VariableEntity]) -> List[VariableEntity]:
        return _combined_output()


class DatasetRetrievalNode(BaseNode):
    data_class = DatasetRetrievalNodeData

    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        # Imported here; the retrieval package pulls in the database layer
        from voidx.services.retrieval.retrieval_service import combine_documents

        if not self.node_data.dataset_ids:
            return {"combine_documents": ""}

        retrieval_service = self.context.require("retrieval_service")
        config = self.node_data.retrieval_config
        documents = await retrieval_service.search(
            account_id=self.context.account_id,
            dataset_ids=self.node_data.dataset_ids,
            query=str(inputs.get("query", "")),
            retrieval_strategy=config.retrieval_strategy,
            k=config.k,
            score=config.score,
            retrieval_source="app",
        )
        return {"combine_documents": combine_documents(documents)}
