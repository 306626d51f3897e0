"""Workflow node kinds and the registry mapping ``node_type`` to implementation."""

from typing import Any, Dict, Type

from voidx.workflow.entities import BaseNodeData, NodeType
from voidx.workflow.nodes.base import BaseNode, NodeContext
from voidx.workflow.nodes.code import CodeNode, CodeNodeData
from voidx.workflow.nodes.dataset_retrieval import DatasetRetrievalNode, DatasetRetrievalNodeData, RetrievalConfig
from voidx.workflow.nodes.end import EndNode, EndNodeData
from voidx.workflow.nodes.http_request import HttpRequestNode, HttpRequestNodeData
from voidx.workflow.nodes.iteration import IterationNode, IterationNodeData
from voidx.workflow.nodes.llm import LLMNode, LLMNodeData
from voidx.workflow.nodes.question_classifier import (
    END_ROUTE,
    ClassConfig,
    QuestionClassifierNode,
    QuestionClassifierNodeData,
)
from voidx.workflow.nodes.start import StartNode, StartNodeData
from voidx.workflow.nodes.template_transform import TemplateTransformNode, TemplateTransformNodeData
from voidx.workflow.nodes.tool import ToolNode, ToolNodeData

NODE_CLASSES: Dict[NodeType, Type[BaseNode]] = {
    NodeType.START: StartNode,
    NodeType.END: EndNode,
    NodeType.LLM: LLMNode,
    NodeType.TOOL: ToolNode,
    NodeType.CODE: CodeNode,
    NodeType.DATASET_RETRIEVAL: DatasetRetrievalNode,
    NodeType.HTTP_REQUEST: HttpRequestNode,
    NodeType.TEMPLATE_TRANSFORM: TemplateTransformNode,
    NodeType.QUESTION_CLASSIFIER: QuestionClassifierNode,
    NodeType.ITERATION: IterationNode,
}


def parse_node_data(raw: Dict[str, Any]) -> BaseNodeData:
    """Parse a raw node payload into its typed data model.

    Raises:
        ValueError: If ``node_type`` is unknown
        pydantic.ValidationError: If the payload does not match the node kind
    """
    node_type = NodeType(raw.get("node_type"))
    return NODE_CLASSES[node_type].data_class.model_validate(raw)


def build_node(node_data: BaseNodeData, context: NodeContext) -> BaseNode:
    return NODE_CLASSES[node_data.node_type](node_data, context)


__all__ = [
    "NODE_CLASSES",
    "END_ROUTE",
    "BaseNode",
    "NodeContext",
    "ClassConfig",
    "RetrievalConfig",
    "CodeNodeData",
    "DatasetRetrievalNodeData",
    "EndNodeData",
    "HttpRequestNodeData",
    "IterationNodeData",
    "LLMNodeData",
    "QuestionClassifierNodeData",
    "StartNodeData",
    "TemplateTransformNodeData",
    "ToolNodeData",
    "parse_node_data",
    "build_node",
]
