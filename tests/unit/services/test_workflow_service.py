"""Tests for WorkflowService."""

import asyncio
import json
import uuid

import pytest

from voidx.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from voidx.repositories.workflow_repository import WorkflowResultRepository
from voidx.services.workflow_service import WorkflowService
from voidx.workflow.entities import NodeStatus, WorkflowStatus

from helpers import edge, end_node, exclaim_graph, greeting_graph, iteration_graph, node, ref, start_node


@pytest.fixture
def service(session, language_model, code_runner, clock):
    return WorkflowService(session, language_model=language_model, code_runner=code_runner, clock=clock)


def llm_graph():
    start = start_node("question")
    chat = node("llm", "Chat", prompt="{{question}}", inputs=[ref("question", start, "question")])
    end = end_node(ref("answer", chat, "response"))
    return {"nodes": [start, chat, end], "edges": [edge(start, chat), edge(chat, end)]}


async def _debugged(service, account_id, tool_call_name="greeter", graph=None, inputs=None):
    workflow = await service.create_workflow(account_id, "Greeter", tool_call_name)
    await service.update_draft_graph(workflow.id, account_id, graph or greeting_graph())
    run = await service.debug_workflow(workflow.id, account_id, inputs or {"name": "Ada"})
    events = [event async for event in run]
    return workflow, run, events


class TestWorkflowCrud:
    """Create, read, update, delete and list."""

    @pytest.mark.asyncio
    async def test_create_starts_as_empty_draft(self, service, account_id):
        workflow = await service.create_workflow(account_id, "  My Flow ", "my_flow", description="demo")

        assert workflow.name == "My Flow"
        assert workflow.status == "draft"
        assert workflow.is_debug_passed is False
        assert workflow.draft_graph == {"nodes": [], "edges": []}
        assert await service.get_draft_graph(workflow.id, account_id) == {"nodes": [], "edges": []}

    @pytest.mark.asyncio
    async def test_duplicate_tool_call_name(self, service, account_id):
        await service.create_workflow(account_id, "One", "shared_name")

        with pytest.raises(ConflictError):
            await service.create_workflow(account_id, "Two", "shared_name")

    @pytest.mark.asyncio
    async def test_same_tool_call_name_for_other_account(self, service, account_id):
        await service.create_workflow(account_id, "One", "shared_name")

        other = await service.create_workflow(uuid.uuid4(), "One", "shared_name")

        assert other.tool_call_name == "shared_name"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name, tool_call_name", [("", "ok_name"), ("Fine", "9lives"), ("Fine", "has space")])
    async def test_invalid_names(self, service, account_id, name, tool_call_name):
        with pytest.raises(ValidationError):
            await service.create_workflow(account_id, name, tool_call_name)

    @pytest.mark.asyncio
    async def test_get_enforces_ownership(self, service, account_id):
        workflow = await service.create_workflow(account_id, "Mine", "mine")

        with pytest.raises(ForbiddenError):
            await service.get_workflow(workflow.id, uuid.uuid4())
        with pytest.raises(NotFoundError):
            await service.get_workflow(uuid.uuid4(), account_id)

    @pytest.mark.asyncio
    async def test_update_fields(self, service, account_id):
        workflow = await service.create_workflow(account_id, "Old", "old_name")

        updated = await service.update_workflow(workflow.id, account_id, name="New", tool_call_name="new_name", icon=None)

        assert (updated.name, updated.tool_call_name) == ("New", "new_name")

    @pytest.mark.asyncio
    async def test_update_to_taken_tool_call_name(self, service, account_id):
        await service.create_workflow(account_id, "A", "taken")
        workflow = await service.create_workflow(account_id, "B", "free")

        with pytest.raises(ConflictError):
            await service.update_workflow(workflow.id, account_id, tool_call_name="taken")

    @pytest.mark.asyncio
    async def test_list_filters_and_paginates(self, service, account_id):
        for index in range(3):
            await service.create_workflow(account_id, f"Report {index}", f"report_{index}")
        await service.create_workflow(account_id, "Other", "other")
        await service.create_workflow(uuid.uuid4(), "Report x", "report_x")

        workflows, paginator = await service.list_workflows(account_id, current_page=1, page_size=2, search_word="report")

        assert len(workflows) == 2
        assert all(w.name.startswith("Report") for w in workflows)
        assert (paginator.total_record, paginator.total_page) == (3, 2)

    @pytest.mark.asyncio
    async def test_list_rejects_bad_page_size(self, service, account_id):
        with pytest.raises(ValidationError):
            await service.list_workflows(account_id, page_size=100)

    @pytest.mark.asyncio
    async def test_delete(self, service, account_id):
        workflow, run, _ = await _debugged(service, account_id)

        assert await service.delete_workflow(workflow.id, account_id) is True

        with pytest.raises(NotFoundError):
            await service.get_workflow(workflow.id, account_id)
        assert await WorkflowResultRepository(service.session).get_by_id(run.result_id) is None


class TestDraftGraph:
    @pytest.mark.asyncio
    async def test_valid_graph_is_stored_normalized(self, service, account_id):
        workflow = await service.create_workflow(account_id, "Greeter", "greeter")
        graph = greeting_graph()
        graph["nodes"][1]["title"] = " Greet "

        updated = await service.update_draft_graph(workflow.id, account_id, graph)

        assert [n["title"] for n in updated.draft_graph["nodes"]] == ["Start", "Greet", "End"]
        assert updated.is_debug_passed is False

    @pytest.mark.asyncio
    async def test_invalid_graph_is_rejected(self, service, account_id):
        workflow = await service.create_workflow(account_id, "Greeter", "greeter")
        graph = greeting_graph()
        graph["edges"].append(edge(graph["nodes"][2], graph["nodes"][0]))

        with pytest.raises(ValidationError, match="cycle"):
            await service.update_draft_graph(workflow.id, account_id, graph)


class TestDebugAndPublish:
    @pytest.mark.asyncio
    async def test_successful_debug_run_is_recorded(self, service, account_id):
        workflow, run, events = await _debugged(service, account_id)

        assert run.result.status == WorkflowStatus.SUCCEEDED
        assert run.result.outputs == {"result": "Hello Ada"}
        assert events[-1].status == NodeStatus.SUCCEEDED
        record = await WorkflowResultRepository(service.session).get_by_id(run.result_id)
        assert record.status == "succeeded"
        assert [state["title"] for state in record.state] == ["Start", "Greet", "End"]
        assert (await service.get_workflow(workflow.id, account_id)).is_debug_passed is True

    @pytest.mark.asyncio
    async def test_closing_debug_stream_marks_run_failed(self, service, account_id, language_model):
        language_model.gate = asyncio.Event()
        workflow = await service.create_workflow(account_id, "Chat", "chat")
        await service.update_draft_graph(workflow.id, account_id, llm_graph())
        run = await service.debug_workflow(workflow.id, account_id, {"question": "hello"})

        async for event in run:
            if event.title == "Chat":
                break
        await run.aclose()

        assert run.result.status == WorkflowStatus.FAILED
        assert run.result.error == "Workflow run cancelled"
        record = await WorkflowResultRepository(service.session).get_by_id(run.result_id)
        assert record.status == "failed"
        assert (await service.get_workflow(workflow.id, account_id)).is_debug_passed is False

    @pytest.mark.asyncio
    async def test_iteration_uses_sub_workflow_draft(self, service, account_id):
        sub = await service.create_workflow(account_id, "Exclaim", "exclaim")
        await service.update_draft_graph(sub.id, account_id, exclaim_graph())

        _, run, _ = await _debugged(
            service, account_id, "looper", graph=iteration_graph(sub.id), inputs={"items": ["a", "b"]}
        )

        assert run.result.status == WorkflowStatus.SUCCEEDED
        assert [json.loads(item)["processed_input"] for item in run.result.outputs["results"]] == ["a!", "b!"]

    @pytest.mark.asyncio
    async def test_publish_requires_debug_pass(self, service, account_id):
        workflow = await service.create_workflow(account_id, "Greeter", "greeter")
        await service.update_draft_graph(workflow.id, account_id, greeting_graph())

        with pytest.raises(ValidationError):
            await service.publish_workflow(workflow.id, account_id)

    @pytest.mark.asyncio
    async def test_publish_and_cancel(self, service, account_id):
        workflow, _, _ = await _debugged(service, account_id)

        published = await service.publish_workflow(workflow.id, account_id)

        assert published.status == "published"
        assert published.graph == published.draft_graph
        assert published.published_at is not None
        assert published.is_debug_passed is False

        cancelled = await service.cancel_publish_workflow(workflow.id, account_id)

        assert cancelled.status == "draft"
        assert cancelled.graph == {}
        with pytest.raises(ValidationError):
            await service.cancel_publish_workflow(workflow.id, account_id)

    @pytest.mark.asyncio
    async def test_editing_draft_resets_debug_pass(self, service, account_id):
        workflow, _, _ = await _debugged(service, account_id)

        updated = await service.update_draft_graph(workflow.id, account_id, greeting_graph())

        assert updated.is_debug_passed is False
