"""Structural and reference validation of user-authored workflow graphs.

``validate_graph`` returns either a normalized ``WorkflowGraph`` or a
``GraphValidationError``; it never raises for a bad graph. Normalization
trims titles, drops inaccessible dataset IDs from retrieval nodes and
removes the workflow's own ID from iteration nodes.
"""

import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from pydantic import ValidationError as PydanticValidationError

from voidx.workflow.entities import (
    DESCRIPTION_MAX_LENGTH,
    WORKFLOW_NAME_PATTERN,
    BaseEdgeData,
    BaseNodeData,
    GraphValidationError,
    NodeType,
    WorkflowGraph,
)
from voidx.workflow.nodes import parse_node_data
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

DatasetFilter = Callable[[List[uuid.UUID]], Awaitable[List[uuid.UUID]]]


def _describe(error: Exception) -> str:
    if isinstance(error, PydanticValidationError):
        first = error.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", str(error))
        return f"{location}: {message}" if location else message
    return str(error)


def topological_order(node_ids: List[uuid.UUID], adjacency: Dict[uuid.UUID, List[uuid.UUID]]) -> List[uuid.UUID]:
    """Kahn's algorithm; ties follow ``node_ids`` order. Shorter than the input on a cycle."""
    position = {node_id: index for index, node_id in enumerate(node_ids)}
    in_degree = {node_id: 0 for node_id in node_ids}
    for targets in adjacency.values():
        for target in targets:
            in_degree[target] += 1

    ready = [node_id for node_id in node_ids if in_degree[node_id] == 0]
    order: List[uuid.UUID] = []
    while ready:
        ready.sort(key=position.__getitem__)
        node_id = ready.pop(0)
        order.append(node_id)
        for target in adjacency.get(node_id, []):
            in_degree[target] -= 1
            if in_degree[target] == 0:
                ready.append(target)
    return order


def _predecessors(node_id: uuid.UUID, reverse_adjacency: Dict[uuid.UUID, List[uuid.UUID]]) -> Set[uuid.UUID]:
    seen: Set[uuid.UUID] = set()
    stack = list(reverse_adjacency.get(node_id, []))
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        stack.extend(reverse_adjacency.get(current, []))
    return seen


async def validate_graph(
    raw_graph: Dict[str, Any],
    name: str,
    description: str = "",
    dataset_filter: Optional[DatasetFilter] = None,
    current_workflow_id: Optional[uuid.UUID] = None,
) -> Union[WorkflowGraph, GraphValidationError]:
    """Validate and normalize a raw ``{"nodes": [...], "edges": [...]}`` payload.

    Args:
        raw_graph: Graph as sent by the editor
        name: Workflow tool-call name
        description: Workflow description
        dataset_filter: Returns the subset of dataset IDs the caller owns;
            without it retrieval nodes keep their IDs
        current_workflow_id: ID of the workflow being edited, removed from
            iteration nodes so a workflow cannot iterate over itself

    Returns:
        The normalized graph, or the first rule violation found
    """
    if not WORKFLOW_NAME_PATTERN.match(name or ""):
        return GraphValidationError(
            "invalid_name",
            "Workflow name may only contain letters, digits and underscores and must not start with a digit",
        )
    if len(description or "") > DESCRIPTION_MAX_LENGTH:
        return GraphValidationError(
            "invalid_description", f"Workflow description cannot exceed {DESCRIPTION_MAX_LENGTH} characters"
        )

    raw_nodes = (raw_graph or {}).get("nodes") or []
    raw_edges = (raw_graph or {}).get("edges") or []
    if not raw_nodes:
        return GraphValidationError("empty_graph", "Workflow graph must contain at least one node")
    if not raw_edges:
        return GraphValidationError("empty_graph", "Workflow graph must contain at least one edge")

    # Nodes
    nodes: List[BaseNodeData] = []
    for index, raw_node in enumerate(raw_nodes):
        if not isinstance(raw_node, dict):
            return GraphValidationError("invalid_node", f"Node #{index} is not an object")
        try:
            node = parse_node_data(raw_node)
        except (PydanticValidationError, ValueError, KeyError) as e:
            return GraphValidationError("invalid_node", f"Node #{index} is invalid: {_describe(e)}")
        node.title = node.title.strip()
        if not node.title:
            return GraphValidationError("invalid_node", f"Node {node.id} must have a title")
        nodes.append(node)

    node_map: Dict[uuid.UUID, BaseNodeData] = {}
    titles: Set[str] = set()
    for node in nodes:
        if node.id in node_map:
            return GraphValidationError("duplicate_node", f"Duplicate node id {node.id}")
        if node.title in titles:
            return GraphValidationError("duplicate_node", f"Duplicate node title {node.title!r}")
        node_map[node.id] = node
        titles.add(node.title)

    start_nodes = [node for node in nodes if node.node_type == NodeType.START]
    end_nodes = [node for node in nodes if node.node_type == NodeType.END]
    if len(start_nodes) != 1 or len(end_nodes) != 1:
        return GraphValidationError(
            "invalid_start_end", "Workflow graph must contain exactly one start node and one end node"
        )
    start, end = start_nodes[0], end_nodes[0]

    # Edges
    edges: List[BaseEdgeData] = []
    edge_ids: Set[uuid.UUID] = set()
    edge_keys: Set[tuple] = set()
    for index, raw_edge in enumerate(raw_edges):
        if not isinstance(raw_edge, dict):
            return GraphValidationError("invalid_edge", f"Edge #{index} is not an object")
        try:
            edge = BaseEdgeData.model_validate(raw_edge)
        except PydanticValidationError as e:
            return GraphValidationError("invalid_edge", f"Edge #{index} is invalid: {_describe(e)}")
        if edge.id in edge_ids:
            return GraphValidationError("invalid_edge", f"Duplicate edge id {edge.id}")
        source, target = node_map.get(edge.source), node_map.get(edge.target)
        if source is None or target is None:
            return GraphValidationError("invalid_edge", f"Edge {edge.id} references an unknown node")
        if source.node_type != edge.source_type or target.node_type != edge.target_type:
            return GraphValidationError("invalid_edge", f"Edge {edge.id} node types do not match its nodes")
        key = (edge.source, edge.target, edge.source_handle_id)
        if key in edge_keys:
            return GraphValidationError("duplicate_edge", f"Edge {edge.id} duplicates another edge")
        edge_ids.add(edge.id)
        edge_keys.add(key)
        edges.append(edge)

    node_ids = [node.id for node in nodes]
    adjacency: Dict[uuid.UUID, List[uuid.UUID]] = {node_id: [] for node_id in node_ids}
    reverse_adjacency: Dict[uuid.UUID, List[uuid.UUID]] = {node_id: [] for node_id in node_ids}
    for edge in edges:
        adjacency[edge.source].append(edge.target)
        reverse_adjacency[edge.target].append(edge.source)

    # A cycle also breaks the degree rule; report the cycle
    if len(topological_order(node_ids, adjacency)) != len(node_ids):
        return GraphValidationError("cycle", "Workflow graph contains a cycle")

    sources = [node_id for node_id in node_ids if not reverse_adjacency[node_id]]
    sinks = [node_id for node_id in node_ids if not adjacency[node_id]]
    if sources != [start.id]:
        return GraphValidationError("invalid_degree", "The start node must be the only node without incoming edges")
    if sinks != [end.id]:
        return GraphValidationError("invalid_degree", "The end node must be the only node without outgoing edges")

    visited = {start.id}
    queue = deque([start.id])
    while queue:
        for target in adjacency[queue.popleft()]:
            if target not in visited:
                visited.add(target)
                queue.append(target)
    if len(visited) != len(node_ids):
        return GraphValidationError("disconnected", "Every node must be reachable from the start node")

    # References
    for node in nodes:
        if node.node_type == NodeType.START:
            continue
        predecessors = _predecessors(node.id, reverse_adjacency)
        for variable in node.get_inputs():
            if not variable.is_ref:
                continue
            ref = variable.value.content
            ref_node = node_map.get(ref.ref_node_id) if ref.ref_node_id else None
            if ref_node is None or ref_node.id not in predecessors:
                return GraphValidationError(
                    "invalid_reference",
                    f"Input {variable.name} of node {node.title!r} must reference a node before it",
                )
            if ref.ref_var_name not in {output.name for output in ref_node.get_outputs()}:
                return GraphValidationError(
                    "invalid_reference",
                    f"Input {variable.name} of node {node.title!r} references unknown output "
                    f"{ref.ref_var_name!r} of node {ref_node.title!r}",
                )

    # Per-kind checks and normalization
    for node in nodes:
        if node.node_type == NodeType.QUESTION_CLASSIFIER:
            if not node.classes:
                return GraphValidationError(
                    "invalid_classifier", f"Question classifier {node.title!r} needs at least one class"
                )
            handles = {edge.source_handle_id for edge in edges if edge.source == node.id}
            for item in node.classes:
                if item.source_handle_id not in handles:
                    return GraphValidationError(
                        "invalid_classifier",
                        f"Class handle {item.source_handle_id} of {node.title!r} has no outgoing edge",
                    )
        elif node.node_type == NodeType.ITERATION:
            if current_workflow_id is not None:
                node.workflow_ids = [wid for wid in node.workflow_ids if wid != current_workflow_id]
            if len(node.workflow_ids) != 1:
                return GraphValidationError(
                    "invalid_iteration", f"Iteration node {node.title!r} must bind exactly one other workflow"
                )
        elif node.node_type == NodeType.DATASET_RETRIEVAL and dataset_filter is not None and node.dataset_ids:
            owned = set(await dataset_filter(list(node.dataset_ids)))
            dropped = [dataset_id for dataset_id in node.dataset_ids if dataset_id not in owned]
            if dropped:
                LOGGER.info(
                    f"Dropping {len(dropped)} inaccessible dataset(s) from retrieval node",
                    extra={"node_id": str(node.id)},
                )
            node.dataset_ids = [dataset_id for dataset_id in node.dataset_ids if dataset_id in owned]

    return WorkflowGraph(nodes=nodes, edges=edges)
