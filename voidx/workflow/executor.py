"""Sequential, topologically ordered execution of a validated workflow graph.

A node runs when at least one incoming edge is live: its source succeeded
and, for a question classifier, the edge carries the selected handle. Nodes
with no live incoming edge are skipped, which propagates down their
branch. The start node always runs.
"""

import asyncio
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from voidx.workflow.entities import (
    BaseEdgeData,
    BaseNodeData,
    NodeEvent,
    NodeResult,
    NodeStatus,
    NodeType,
    VariableEntity,
    WorkflowGraph,
    WorkflowRunResult,
    WorkflowStatus,
    coerce_value,
    default_value,
)
from voidx.workflow.nodes import END_ROUTE, NodeContext, build_node
from voidx.workflow.validator import topological_order
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

Emit = Callable[[NodeEvent], Awaitable[None]]

_DONE = object()


class WorkflowExecutor:
    """Runs one graph once; ``result`` holds the final state afterwards.

    Usage:
        result = await WorkflowExecutor(graph, context).run({"query": "hi"})

        executor = WorkflowExecutor(graph, context)
        async for event in executor.stream({"query": "hi"}):
            ...
        executor.result.status
    """

    def __init__(self, graph: WorkflowGraph, context: NodeContext):
        self.graph = graph
        self.context = context
        self.result = WorkflowRunResult()

        self._node_map = graph.node_map()
        self._in_edges: Dict[uuid.UUID, List[BaseEdgeData]] = {node.id: [] for node in graph.nodes}
        adjacency: Dict[uuid.UUID, List[uuid.UUID]] = {node.id: [] for node in graph.nodes}
        for edge in graph.edges:
            self._in_edges[edge.target].append(edge)
            adjacency[edge.source].append(edge.target)
        self._order = topological_order([node.id for node in graph.nodes], adjacency)
        self._states: Dict[uuid.UUID, NodeResult] = {}
        self._end_routed = False
        self._started_at = 0.0

    async def run(self, inputs: Dict[str, Any]) -> WorkflowRunResult:
        """Run to completion, collecting events into ``result.events``."""

        async def discard(event: NodeEvent) -> None:
            pass

        await self._execute(inputs, discard)
        return self.result

    async def stream(self, inputs: Dict[str, Any]) -> AsyncIterator[NodeEvent]:
        """Yield node events as they happen.

        Events pass through a bounded queue fed by a producer task, so a slow
        consumer throttles the run. Closing the generator early cancels the
        producer and marks the run failed; no further events are produced.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.context.queue_size)

        async def produce() -> None:
            try:
                await self._execute(inputs, queue.put)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                LOGGER.error("Workflow producer crashed", exc_info=True)
                self._finish(WorkflowStatus.FAILED, f"Workflow run crashed: {str(e)}")
            await queue.put(_DONE)

        producer = asyncio.create_task(produce())
        try:
            while True:
                event = await queue.get()
                if event is _DONE:
                    break
                yield event
            await producer
        finally:
            if not producer.done():
                producer.cancel()
                try:
                    await producer
                except asyncio.CancelledError:
                    pass
                self._finish(WorkflowStatus.FAILED, "Workflow run cancelled")
                LOGGER.info("Workflow run cancelled by the caller", extra={"workflow_id": str(self.context.workflow_id)})

    async def _execute(self, inputs: Dict[str, Any], emit: Emit) -> None:
        self._started_at = self.context.clock.monotonic()
        self.result.inputs = dict(inputs or {})

        async def record(event: NodeEvent) -> None:
            self.result.events.append(event)
            await emit(event)

        failed_error = ""
        for node_id in self._order:
            node_data = self._node_map[node_id]
            if not self._is_live(node_data):
                await self._skip(node_data, record)
                continue

            state = await self._run_node(node_data, inputs or {}, record)
            if state.status == NodeStatus.FAILED:
                failed_error = failed_error or f"Node {node_data.title!r} failed: {state.error}"
                # A failed classifier selects no branch; everything after it is skipped
                if node_data.node_type != NodeType.QUESTION_CLASSIFIER:
                    break
            elif node_data.node_type == NodeType.QUESTION_CLASSIFIER:
                if state.outputs.get("classification") == END_ROUTE:
                    self._end_routed = True

        if failed_error:
            self._finish(WorkflowStatus.FAILED, failed_error)
            return

        end_state = self._states.get(self.graph.end_node().id)
        if end_state is not None and end_state.status == NodeStatus.SUCCEEDED:
            self.result.outputs = dict(end_state.outputs)
        self._finish(WorkflowStatus.SUCCEEDED)

    def _finish(self, status: WorkflowStatus, error: str = "") -> None:
        self.result.status = status
        self.result.error = error
        self.result.node_results = list(self._states.values())
        self.result.latency = self.context.clock.monotonic() - self._started_at

    def _is_live(self, node_data: BaseNodeData) -> bool:
        if node_data.node_type == NodeType.START:
            return True
        if node_data.node_type == NodeType.END and self._end_routed:
            return True
        for edge in self._in_edges[node_data.id]:
            source = self._states.get(edge.source)
            if source is None or source.status != NodeStatus.SUCCEEDED:
                continue
            if source.node_type == NodeType.QUESTION_CLASSIFIER:
                if edge.source_handle_id == source.outputs.get("classification"):
                    return True
                continue
            return True
        return False

    async def _skip(self, node_data: BaseNodeData, emit: Emit) -> None:
        state = NodeResult(
            node_id=node_data.id,
            node_type=node_data.node_type,
            title=node_data.title,
            status=NodeStatus.SKIPPED,
        )
        self._states[node_data.id] = state
        await emit(
            NodeEvent(
                node_id=node_data.id,
                node_type=node_data.node_type,
                title=node_data.title,
                status=NodeStatus.SKIPPED,
            )
        )

    def _resolve(self, variable: VariableEntity) -> Any:
        if not variable.is_ref:
            return coerce_value(variable.type, variable.value.content)

        ref = variable.value.content
        source = self._states.get(ref.ref_node_id)
        if source is None or source.status != NodeStatus.SUCCEEDED or ref.ref_var_name not in source.outputs:
            if variable.required:
                raise ValueError(f"Required input {variable.name} has no value from its referenced node")
            return default_value(variable.type)
        return coerce_value(variable.type, source.outputs[ref.ref_var_name])

    def _node_inputs(self, node_data: BaseNodeData, caller_inputs: Dict[str, Any]) -> Dict[str, Any]:
        if node_data.node_type == NodeType.START:
            return dict(caller_inputs)
        return {variable.name: self._resolve(variable) for variable in node_data.get_inputs()}

    async def _run_node(self, node_data: BaseNodeData, caller_inputs: Dict[str, Any], emit: Emit) -> NodeResult:
        clock = self.context.clock
        state = NodeResult(node_id=node_data.id, node_type=node_data.node_type, title=node_data.title)
        self._states[node_data.id] = state
        start_time = clock.now()
        started = clock.monotonic()

        error: Optional[str] = None
        try:
            state.inputs = self._node_inputs(node_data, caller_inputs)
        except (TypeError, ValueError) as e:
            error = str(e)

        await emit(
            NodeEvent(
                node_id=node_data.id,
                node_type=node_data.node_type,
                title=node_data.title,
                status=NodeStatus.RUNNING,
                inputs=state.inputs,
                start_time=start_time,
            )
        )

        if error is None:
            try:
                state.outputs = await build_node(node_data, self.context).invoke(state.inputs)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                LOGGER.error(
                    f"Workflow node {node_data.title!r} failed: {str(e)}",
                    exc_info=True,
                    extra={"node_id": str(node_data.id), "node_type": node_data.node_type.value},
                )
                error = str(e) or type(e).__name__

        state.latency = clock.monotonic() - started
        state.status = NodeStatus.FAILED if error is not None else NodeStatus.SUCCEEDED
        state.error = error or ""
        await emit(
            NodeEvent(
                node_id=node_data.id,
                node_type=node_data.node_type,
                title=node_data.title,
                status=state.status,
                inputs=state.inputs,
                outputs=None if error is not None else state.outputs,
                start_time=start_time,
                end_time=clock.now(),
                elapsed_time=state.latency,
                error=error,
            )
        )
        return state
