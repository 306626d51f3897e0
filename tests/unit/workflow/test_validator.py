"""Tests for workflow graph validation and normalization."""

import uuid

import pytest

from voidx.workflow.entities import GraphValidationError, WorkflowGraph
from voidx.workflow.validator import topological_order, validate_graph

from helpers import (
    classifier_graph,
    edge,
    end_node,
    greeting_graph,
    iteration_graph,
    node,
    ref,
    start_node,
    template_node,
)


async def _kind(graph, name="my_workflow", **kwargs):
    result = await validate_graph(graph, name, **kwargs)
    assert isinstance(result, GraphValidationError), f"expected a rejection, got {result!r}"
    return result.kind


class TestValidGraphs:
    """Graphs that pass validation."""

    @pytest.mark.asyncio
    async def test_greeting_graph_is_valid(self):
        graph = greeting_graph()

        result = await validate_graph(graph, "greeter")

        assert isinstance(result, WorkflowGraph)
        assert [n.title for n in result.nodes] == ["Start", "Greet", "End"]
        assert len(result.edges) == 2

    @pytest.mark.asyncio
    async def test_classifier_graph_is_valid(self):
        assert isinstance(await validate_graph(classifier_graph(), "router"), WorkflowGraph)

    @pytest.mark.asyncio
    async def test_titles_are_trimmed(self):
        graph = greeting_graph()
        graph["nodes"][1]["title"] = "  Greet  "

        result = await validate_graph(graph, "greeter")

        assert result.nodes[1].title == "Greet"

    @pytest.mark.asyncio
    async def test_to_dict_validates_again(self):
        result = await validate_graph(greeting_graph(), "greeter")

        again = await validate_graph(result.to_dict(), "greeter")

        assert isinstance(again, WorkflowGraph)
        assert again.to_dict() == result.to_dict()

    @pytest.mark.asyncio
    async def test_llm_prompt_and_model_are_referable(self):
        start = start_node("question")
        chat = node("llm", "Chat", prompt="{{question}}", inputs=[ref("question", start, "question")])
        end = end_node(ref("prompt", chat, "prompt_used"), ref("model", chat, "model"))
        graph = {"nodes": [start, chat, end], "edges": [edge(start, chat), edge(chat, end)]}

        result = await validate_graph(graph, "asker")

        assert isinstance(result, WorkflowGraph), result


class TestRejectedGraphs:
    """Each rule violation maps to its error kind."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "1workflow", "has space", "dash-name"])
    async def test_invalid_name(self, name):
        assert await _kind(greeting_graph(), name=name) == "invalid_name"

    @pytest.mark.asyncio
    async def test_description_too_long(self):
        assert await _kind(greeting_graph(), description="x" * 1025) == "invalid_description"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("graph", [{}, {"nodes": [], "edges": []}, {"nodes": [start_node("q")], "edges": []}])
    async def test_empty_graph(self, graph):
        assert await _kind(graph) == "empty_graph"

    @pytest.mark.asyncio
    async def test_invalid_node_payload(self):
        graph = greeting_graph()
        graph["nodes"].append(node("llm", "Chat", prompt="   "))

        assert await _kind(graph) == "invalid_node"

    @pytest.mark.asyncio
    async def test_unknown_node_type(self):
        graph = greeting_graph()
        graph["nodes"].append(node("teleport", "Beam"))

        assert await _kind(graph) == "invalid_node"

    @pytest.mark.asyncio
    async def test_duplicate_title(self):
        graph = greeting_graph()
        graph["nodes"][1]["title"] = "Start"

        assert await _kind(graph) == "duplicate_node"

    @pytest.mark.asyncio
    async def test_two_start_nodes(self):
        graph = greeting_graph()
        extra = start_node("other")
        extra["title"] = "Second Start"
        graph["nodes"].append(extra)
        graph["edges"].append(edge(extra, graph["nodes"][1]))

        assert await _kind(graph) == "invalid_start_end"

    @pytest.mark.asyncio
    async def test_edge_to_unknown_node(self):
        graph = greeting_graph()
        dangling = edge(graph["nodes"][0], node("template_transform", "Ghost"))
        graph["edges"].append(dangling)

        assert await _kind(graph) == "invalid_edge"

    @pytest.mark.asyncio
    async def test_edge_type_mismatch(self):
        graph = greeting_graph()
        graph["edges"][0]["target_type"] = "llm"

        assert await _kind(graph) == "invalid_edge"

    @pytest.mark.asyncio
    async def test_duplicate_edge(self):
        graph = greeting_graph()
        start, greet = graph["nodes"][0], graph["nodes"][1]
        graph["edges"].append(edge(start, greet))

        assert await _kind(graph) == "duplicate_edge"

    @pytest.mark.asyncio
    async def test_cycle_is_reported_before_degree(self):
        start = start_node("q")
        a = template_node("A", "a")
        b = template_node("B", "b")
        end = end_node()
        graph = {
            "nodes": [start, a, b, end],
            "edges": [edge(start, a), edge(a, b), edge(b, a), edge(b, end)],
        }

        assert await _kind(graph) == "cycle"

    @pytest.mark.asyncio
    async def test_second_source_node(self):
        start = start_node("q")
        a = template_node("A", "a")
        orphan = template_node("Orphan", "o")
        end = end_node()
        graph = {
            "nodes": [start, a, orphan, end],
            "edges": [edge(start, a), edge(a, end), edge(orphan, end)],
        }

        assert await _kind(graph) == "invalid_degree"

    @pytest.mark.asyncio
    async def test_second_sink_node(self):
        start = start_node("q")
        a = template_node("A", "a")
        dead_end = template_node("Dead End", "d")
        end = end_node()
        graph = {
            "nodes": [start, a, dead_end, end],
            "edges": [edge(start, a), edge(a, end), edge(a, dead_end)],
        }

        assert await _kind(graph) == "invalid_degree"

    @pytest.mark.asyncio
    async def test_reference_to_later_node(self):
        start = start_node("q")
        b = template_node("B", "b")
        a = template_node("A", "{{x}}", ref("x", b, "output"))
        end = end_node()
        graph = {
            "nodes": [start, a, b, end],
            "edges": [edge(start, a), edge(a, b), edge(b, end)],
        }

        assert await _kind(graph) == "invalid_reference"

    @pytest.mark.asyncio
    async def test_reference_to_unknown_output(self):
        graph = greeting_graph()
        start = graph["nodes"][0]
        graph["nodes"][1]["inputs"] = [ref("name", start, "nickname")]

        assert await _kind(graph) == "invalid_reference"

    @pytest.mark.asyncio
    async def test_classifier_handle_without_edge(self):
        graph = classifier_graph()
        graph["nodes"][1]["classes"].append({"query": "questions about z", "source_handle_id": "hz"})

        assert await _kind(graph) == "invalid_classifier"

    @pytest.mark.asyncio
    async def test_classifier_without_classes(self):
        start = start_node("query")
        classifier = node("question_classifier", "Route", inputs=[ref("query", start, "query")], classes=[])
        end = end_node()
        graph = {"nodes": [start, classifier, end], "edges": [edge(start, classifier), edge(classifier, end)]}

        assert await _kind(graph) == "invalid_classifier"


class TestNormalization:
    """Normalization of iteration and retrieval nodes."""

    @pytest.mark.asyncio
    async def test_iteration_drops_its_own_workflow(self):
        workflow_id = uuid.uuid4()

        kind = await _kind(iteration_graph(workflow_id), current_workflow_id=workflow_id)

        assert kind == "invalid_iteration"

    @pytest.mark.asyncio
    async def test_iteration_keeps_other_workflow(self):
        other_id, own_id = uuid.uuid4(), uuid.uuid4()
        graph = iteration_graph(other_id)
        graph["nodes"][1]["workflow_ids"].append(str(own_id))

        result = await validate_graph(graph, "looper", current_workflow_id=own_id)

        assert isinstance(result, WorkflowGraph)
        assert result.nodes[1].workflow_ids == [other_id]

    @pytest.mark.asyncio
    async def test_retrieval_keeps_only_accessible_datasets(self):
        owned, foreign = uuid.uuid4(), uuid.uuid4()
        start = start_node("query")
        retrieval = node(
            "dataset_retrieval",
            "Search",
            dataset_ids=[str(owned), str(foreign)],
            inputs=[ref("query", start, "query")],
        )
        end = end_node(ref("context", retrieval, "combine_documents"))
        graph = {"nodes": [start, retrieval, end], "edges": [edge(start, retrieval), edge(retrieval, end)]}
        seen = []

        async def dataset_filter(dataset_ids):
            seen.append(list(dataset_ids))
            return [dataset_id for dataset_id in dataset_ids if dataset_id == owned]

        result = await validate_graph(graph, "searcher", dataset_filter=dataset_filter)

        assert isinstance(result, WorkflowGraph)
        assert result.nodes[1].dataset_ids == [owned]
        assert seen == [[owned, foreign]]


def test_topological_order_follows_input_order_on_ties():
    a, b, c, d = (uuid.uuid4() for _ in range(4))

    order = topological_order([a, b, c, d], {a: [c, b], b: [d], c: [d], d: []})

    assert order == [a, b, c, d]
