"""Workflow service: CRUD, draft-graph editing, debug runs and publishing."""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from voidx.core.exceptions import ConflictError, NotFoundError, ValidationError
from voidx.core.interfaces import Clock, CodeRunner, LanguageModel, ToolManager
from voidx.database.models import Workflow
from voidx.repositories.dataset_repository import DatasetRepository
from voidx.repositories.workflow_repository import WorkflowRepository, WorkflowResultRepository
from voidx.schemas.common import Paginator
from voidx.services.base_service import BaseService
from voidx.workflow.entities import (
    WORKFLOW_NAME_PATTERN,
    GraphValidationError,
    NodeEvent,
    WorkflowGraph,
    WorkflowRunResult,
    WorkflowStatus,
)
from voidx.workflow.executor import WorkflowExecutor
from voidx.workflow.nodes import NodeContext
from voidx.workflow.validator import validate_graph
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

EMPTY_GRAPH: Dict[str, Any] = {"nodes": [], "edges": []}

EDITABLE_FIELDS = ("name", "tool_call_name", "icon", "description")


class DebugRun:
    """Node events of one debug run; ``result`` is final once iteration ends."""

    def __init__(self, result_id: uuid.UUID, executor: WorkflowExecutor, events: AsyncIterator[NodeEvent]):
        self.result_id = result_id
        self.executor = executor
        self._events = events

    def __aiter__(self) -> AsyncIterator[NodeEvent]:
        return self._events

    async def aclose(self) -> None:
        await self._events.aclose()

    @property
    def result(self) -> WorkflowRunResult:
        return self.executor.result


class WorkflowService(BaseService):
    """Service for user workflows.

    CRUD and publishing go through ``BaseService.execute`` with an
    ``action`` keyword; debug runs stream ``NodeEvent`` objects directly.
    """

    def __init__(
        self,
        session: AsyncSession,
        language_model: Optional[LanguageModel] = None,
        tool_manager: Optional[ToolManager] = None,
        code_runner: Optional[CodeRunner] = None,
        retrieval_service: Any = None,
        clock: Optional[Clock] = None,
        http_timeout: float = 30.0,
        code_timeout: float = 30.0,
        queue_size: int = 100,
    ):
        """Initialize workflow service.

        Args:
            session: Async database session for repository access
            language_model: Model used by llm and classifier nodes
            tool_manager: Tool registry used by tool nodes
            code_runner: Sandbox used by code nodes
            retrieval_service: ``RetrievalService`` used by retrieval nodes
            clock: Time source for node timings
            http_timeout: Upper bound for HTTP request nodes, in seconds
            code_timeout: Timeout passed to the code runner, in seconds
            queue_size: Capacity of the debug event queue
        """
        super().__init__()
        self.session = session
        self.workflow_repo = WorkflowRepository(session)
        self.result_repo = WorkflowResultRepository(session)
        self.dataset_repo = DatasetRepository(session)
        self.repository = self.workflow_repo
        self.language_model = language_model
        self.tool_manager = tool_manager
        self.code_runner = code_runner
        self.retrieval_service = retrieval_service
        self.clock = clock
        self.http_timeout = http_timeout
        self.code_timeout = code_timeout
        self.queue_size = queue_size

    async def run(self, *args, **kwargs) -> Any:
        """Route to the handler for ``action``."""
        action = kwargs.pop("action", None)

        if action == "create":
            return await self._create_workflow(**kwargs)
        elif action == "get":
            return await self.workflow_repo.get_owned(kwargs["workflow_id"], kwargs["account_id"])
        elif action == "update":
            return await self._update_workflow(**kwargs)
        elif action == "delete":
            return await self._delete_workflow(**kwargs)
        elif action == "list":
            return await self._list_workflows(**kwargs)
        elif action == "update_draft_graph":
            return await self._update_draft_graph(**kwargs)
        elif action == "get_draft_graph":
            workflow = await self.workflow_repo.get_owned(kwargs["workflow_id"], kwargs["account_id"])
            return workflow.draft_graph or dict(EMPTY_GRAPH)
        elif action == "publish":
            return await self._publish_workflow(**kwargs)
        elif action == "cancel_publish":
            return await self._cancel_publish_workflow(**kwargs)
        else:
            raise ValidationError(f"Unknown action: {action}")

    def validate(self, *args, **kwargs):
        action = kwargs.get("action")
        if action in ("create", "update"):
            if action == "create" or kwargs.get("name") is not None:
                name = (kwargs.get("name") or "").strip()
                if not name:
                    raise ValidationError("Workflow name is required")
            tool_call_name = kwargs.get("tool_call_name")
            if action == "create" or tool_call_name is not None:
                if not WORKFLOW_NAME_PATTERN.match((tool_call_name or "").strip()):
                    raise ValidationError(
                        "tool_call_name may only contain letters, digits and underscores and must not start with a digit"
                    )
            if len(kwargs.get("description") or "") > 1024:
                raise ValidationError("Workflow description cannot exceed 1024 characters")
        elif action == "list":
            if kwargs.get("current_page", 1) < 1 or not 1 <= kwargs.get("page_size", 20) <= 50:
                raise ValidationError("Invalid pagination parameters")

    # Public API

    async def create_workflow(
        self,
        account_id: uuid.UUID,
        name: str,
        tool_call_name: str,
        icon: str = "",
        description: str = "",
    ) -> Workflow:
        """Create a draft workflow with an empty graph.

        Raises:
            ValidationError: If the name or tool_call_name is invalid
            ConflictError: If the account already has this tool_call_name
        """
        return await self.execute(
            action="create",
            account_id=account_id,
            name=name,
            tool_call_name=tool_call_name,
            icon=icon,
            description=description,
        )

    async def get_workflow(self, workflow_id: uuid.UUID, account_id: uuid.UUID) -> Workflow:
        return await self.execute(action="get", workflow_id=workflow_id, account_id=account_id)

    async def update_workflow(self, workflow_id: uuid.UUID, account_id: uuid.UUID, **fields) -> Workflow:
        """Update name, tool_call_name, icon or description."""
        return await self.execute(action="update", workflow_id=workflow_id, account_id=account_id, **fields)

    async def delete_workflow(self, workflow_id: uuid.UUID, account_id: uuid.UUID) -> bool:
        return await self.execute(action="delete", workflow_id=workflow_id, account_id=account_id)

    async def list_workflows(
        self,
        account_id: uuid.UUID,
        current_page: int = 1,
        page_size: int = 20,
        search_word: str = "",
        status: str = "",
    ) -> Tuple[List[Workflow], Paginator]:
        return await self.execute(
            action="list",
            account_id=account_id,
            current_page=current_page,
            page_size=page_size,
            search_word=search_word,
            status=status,
        )

    async def update_draft_graph(
        self, workflow_id: uuid.UUID, account_id: uuid.UUID, draft_graph: Dict[str, Any]
    ) -> Workflow:
        """Validate, normalize and store the draft graph; clears ``is_debug_passed``.

        Raises:
            ValidationError: If the graph breaks a structural or reference rule
        """
        return await self.execute(
            action="update_draft_graph", workflow_id=workflow_id, account_id=account_id, draft_graph=draft_graph
        )

    async def get_draft_graph(self, workflow_id: uuid.UUID, account_id: uuid.UUID) -> Dict[str, Any]:
        return await self.execute(action="get_draft_graph", workflow_id=workflow_id, account_id=account_id)

    async def publish_workflow(self, workflow_id: uuid.UUID, account_id: uuid.UUID) -> Workflow:
        return await self.execute(action="publish", workflow_id=workflow_id, account_id=account_id)

    async def cancel_publish_workflow(self, workflow_id: uuid.UUID, account_id: uuid.UUID) -> Workflow:
        return await self.execute(action="cancel_publish", workflow_id=workflow_id, account_id=account_id)

    async def debug_workflow(
        self, workflow_id: uuid.UUID, account_id: uuid.UUID, inputs: Dict[str, Any]
    ) -> DebugRun:
        """Run the draft graph and stream its node events.

        A ``WorkflowResult`` row records the run. A successful run sets
        ``is_debug_passed``; closing the stream early marks the run failed.
        Nothing executes until the returned run is iterated.

        Raises:
            ValidationError: If the stored draft graph is not runnable
        """
        workflow = await self.workflow_repo.get_owned(workflow_id, account_id)
        graph = await self._validated(workflow.draft_graph, workflow, account_id)

        executor = WorkflowExecutor(graph, self._build_context(account_id, workflow_id))
        record = await self.result_repo.create(
            account_id=account_id,
            workflow_id=workflow_id,
            graph=workflow.draft_graph,
            state=[],
            status=WorkflowStatus.RUNNING.value,
        )
        LOGGER.info(
            "Starting workflow debug run",
            extra={"workflow_id": str(workflow_id), "workflow_result_id": str(record.id)},
        )

        async def events() -> AsyncIterator[NodeEvent]:
            stream = executor.stream(inputs)
            try:
                async for event in stream:
                    yield event
            finally:
                # Cancels the producer when the caller stops early
                await stream.aclose()
                await self._save_result(workflow_id, record.id, executor)

        return DebugRun(record.id, executor, events())

    async def load_sub_workflow(self, account_id: uuid.UUID, workflow_id: uuid.UUID) -> WorkflowGraph:
        """Graph of a workflow bound by an iteration node: published, else draft.

        Raises:
            NotFoundError: If the workflow does not exist
            ForbiddenError: If it belongs to another account
            ValidationError: If its graph is not runnable
        """
        workflow = await self.workflow_repo.get_owned(workflow_id, account_id)
        raw_graph = workflow.graph if (workflow.graph or {}).get("nodes") else workflow.draft_graph
        return await self._validated(raw_graph, workflow, account_id)

    # Handlers

    async def _create_workflow(
        self, account_id: uuid.UUID, name: str, tool_call_name: str, icon: str = "", description: str = ""
    ) -> Workflow:
        tool_call_name = tool_call_name.strip()
        if await self.workflow_repo.get_by_tool_call_name(account_id, tool_call_name):
            raise ConflictError(f"A workflow named {tool_call_name} already exists")

        workflow = await self.workflow_repo.create(
            account_id=account_id,
            name=name.strip(),
            tool_call_name=tool_call_name,
            icon=icon,
            description=description,
            graph={},
            draft_graph=dict(EMPTY_GRAPH),
            is_debug_passed=False,
            status="draft",
        )
        LOGGER.info("Workflow created", extra={"workflow_id": str(workflow.id), "account_id": str(account_id)})
        return workflow

    async def _update_workflow(self, workflow_id: uuid.UUID, account_id: uuid.UUID, **fields) -> Workflow:
        workflow = await self.workflow_repo.get_owned(workflow_id, account_id)
        values = {key: value for key, value in fields.items() if key in EDITABLE_FIELDS and value is not None}

        if "tool_call_name" in values:
            values["tool_call_name"] = values["tool_call_name"].strip()
            existing = await self.workflow_repo.get_by_tool_call_name(account_id, values["tool_call_name"])
            if existing is not None and existing.id != workflow.id:
                raise ConflictError(f"A workflow named {values['tool_call_name']} already exists")
        if "name" in values:
            values["name"] = values["name"].strip()

        return await self.workflow_repo.update(workflow.id, **values)

    async def _delete_workflow(self, workflow_id: uuid.UUID, account_id: uuid.UUID) -> bool:
        workflow = await self.workflow_repo.get_owned(workflow_id, account_id)
        await self.result_repo.delete_where(workflow_id=workflow.id)
        deleted = await self.workflow_repo.delete(workflow.id)
        LOGGER.info("Workflow deleted", extra={"workflow_id": str(workflow_id)})
        return deleted

    async def _list_workflows(
        self,
        account_id: uuid.UUID,
        current_page: int = 1,
        page_size: int = 20,
        search_word: str = "",
        status: str = "",
    ) -> Tuple[List[Workflow], Paginator]:
        workflows, total = await self.workflow_repo.list_by_account(
            account_id, current_page=current_page, page_size=page_size, search_word=search_word, status=status
        )
        return workflows, Paginator.build(current_page, page_size, total)

    async def _update_draft_graph(
        self, workflow_id: uuid.UUID, account_id: uuid.UUID, draft_graph: Dict[str, Any]
    ) -> Workflow:
        workflow = await self.workflow_repo.get_owned(workflow_id, account_id)
        graph = await self._validated(draft_graph, workflow, account_id)
        return await self.workflow_repo.update(workflow.id, draft_graph=graph.to_dict(), is_debug_passed=False)

    async def _publish_workflow(self, workflow_id: uuid.UUID, account_id: uuid.UUID) -> Workflow:
        workflow = await self.workflow_repo.get_owned(workflow_id, account_id)
        if not workflow.is_debug_passed:
            raise ValidationError("Workflow must pass a debug run before it can be published")

        # Re-check in case datasets or bound workflows changed since the debug run
        graph = await self._validated(workflow.draft_graph, workflow, account_id)
        return await self.workflow_repo.update(
            workflow.id,
            graph=graph.to_dict(),
            status="published",
            is_debug_passed=False,
            published_at=datetime.now(timezone.utc),
        )

    async def _cancel_publish_workflow(self, workflow_id: uuid.UUID, account_id: uuid.UUID) -> Workflow:
        workflow = await self.workflow_repo.get_owned(workflow_id, account_id)
        if workflow.status != "published":
            raise ValidationError("Workflow is not published")
        return await self.workflow_repo.update(workflow.id, graph={}, status="draft")

    # Helpers

    async def _validated(self, raw_graph: Dict[str, Any], workflow: Workflow, account_id: uuid.UUID) -> WorkflowGraph:
        async def owned_datasets(dataset_ids: List[uuid.UUID]) -> List[uuid.UUID]:
            return await self.dataset_repo.get_owned_ids(account_id, dataset_ids)

        result = await validate_graph(
            raw_graph or {},
            workflow.tool_call_name,
            workflow.description,
            dataset_filter=owned_datasets,
            current_workflow_id=workflow.id,
        )
        if isinstance(result, GraphValidationError):
            LOGGER.info(
                f"Workflow graph rejected: {result.message}",
                extra={"workflow_id": str(workflow.id), "kind": result.kind},
            )
            raise ValidationError(result.message)
        return result

    def _build_context(self, account_id: uuid.UUID, workflow_id: uuid.UUID) -> NodeContext:
        async def load_workflow(sub_workflow_id: uuid.UUID) -> WorkflowGraph:
            return await self.load_sub_workflow(account_id, sub_workflow_id)

        return NodeContext(
            account_id=account_id,
            language_model=self.language_model,
            tool_manager=self.tool_manager,
            code_runner=self.code_runner,
            retrieval_service=self.retrieval_service,
            load_workflow=load_workflow,
            clock=self.clock,
            workflow_id=workflow_id,
            http_timeout=self.http_timeout,
            code_timeout=self.code_timeout,
            queue_size=self.queue_size,
        )

    async def _save_result(self, workflow_id: uuid.UUID, result_id: uuid.UUID, executor: WorkflowExecutor) -> None:
        result = executor.result
        status = result.status if result.status != WorkflowStatus.RUNNING else WorkflowStatus.FAILED
        await self.result_repo.update(
            result_id,
            state=[node_result.model_dump(mode="json") for node_result in result.node_results],
            latency=result.latency,
            status=status.value,
        )
        if status == WorkflowStatus.SUCCEEDED:
            await self.workflow_repo.update(workflow_id, is_debug_passed=True)
        LOGGER.info(
            f"Workflow debug run {status.value}",
            extra={"workflow_id": str(workflow_id), "latency": result.latency, "error": result.error},
        )
