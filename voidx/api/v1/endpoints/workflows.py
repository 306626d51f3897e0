from typing import Annotated, AsyncIterator
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.background import BackgroundTask

from voidx.api.v1.dependencies import AccountId, get_runtime, get_workflow_service
from voidx.core.database import get_session_maker
from voidx.runtime import Runtime
from voidx.schemas.common import ApiResponse
from voidx.schemas.events import SSEEvent, SSEEventType
from voidx.schemas.workflows import (
    DraftGraphRequest,
    WorkflowCreateRequest,
    WorkflowDebugRequest,
    WorkflowListResponse,
    WorkflowResponse,
    WorkflowUpdateRequest,
)
from voidx.services.workflow_service import DebugRun, WorkflowService
from voidx.workflow.entities import WorkflowStatus
from voidx.utils.logging import get_logger
from voidx.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "/",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft workflow",
    operation_id="create_workflow",
)
async def create_workflow(
    request: Request,
    payload: WorkflowCreateRequest,
    account_id: AccountId,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
) -> ApiResponse:
    LOGGER.info(f"Creating workflow for account: {account_id}")
    workflow = await workflow_service.create_workflow(
        account_id=account_id,
        name=payload.name,
        tool_call_name=payload.tool_call_name,
        icon=payload.icon,
        description=payload.description,
    )
    return create_api_response(
        data=WorkflowResponse.from_model(workflow),
        message="Workflow created successfully",
        request=request,
    )


@router.get(
    "/",
    response_model=ApiResponse,
    summary="List workflows",
    operation_id="list_workflows",
)
async def list_workflows(
    request: Request,
    account_id: AccountId,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
    current_page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    search_word: str = Query(""),
    status_filter: str = Query("", alias="status"),
) -> ApiResponse:
    workflows, paginator = await workflow_service.list_workflows(
        account_id,
        current_page=current_page,
        page_size=page_size,
        search_word=search_word,
        status=status_filter,
    )
    data = WorkflowListResponse(
        items=[WorkflowResponse.from_model(workflow) for workflow in workflows],
        paginator=paginator,
    )
    return create_api_response(data=data, message="Workflows retrieved successfully", request=request)


@router.get(
    "/{workflow_id}",
    response_model=ApiResponse,
    summary="Get a workflow",
    operation_id="get_workflow",
)
async def get_workflow(
    request: Request,
    workflow_id: UUID,
    account_id: AccountId,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
) -> ApiResponse:
    workflow = await workflow_service.get_workflow(workflow_id, account_id)
    return create_api_response(
        data=WorkflowResponse.from_model(workflow),
        message="Workflow retrieved successfully",
        request=request,
    )


@router.patch(
    "/{workflow_id}",
    response_model=ApiResponse,
    summary="Update workflow metadata",
    operation_id="update_workflow",
)
async def update_workflow(
    request: Request,
    workflow_id: UUID,
    payload: WorkflowUpdateRequest,
    account_id: AccountId,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
) -> ApiResponse:
    workflow = await workflow_service.update_workflow(
        workflow_id, account_id, **payload.model_dump(exclude_none=True)
    )
    return create_api_response(
        data=WorkflowResponse.from_model(workflow),
        message="Workflow updated successfully",
        request=request,
    )


@router.delete(
    "/{workflow_id}",
    response_model=ApiResponse,
    summary="Delete a workflow",
    operation_id="delete_workflow",
)
async def delete_workflow(
    request: Request,
    workflow_id: UUID,
    account_id: AccountId,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
) -> ApiResponse:
    await workflow_service.delete_workflow(workflow_id, account_id)
    return create_api_response(
        data={"workflow_id": str(workflow_id)},
        message="Workflow deleted successfully",
        request=request,
    )


@router.get(
    "/{workflow_id}/draft-graph",
    response_model=ApiResponse,
    summary="Get the draft graph",
    operation_id="get_workflow_draft_graph",
)
async def get_draft_graph(
    request: Request,
    workflow_id: UUID,
    account_id: AccountId,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
) -> ApiResponse:
    draft_graph = await workflow_service.get_draft_graph(workflow_id, account_id)
    return create_api_response(data=draft_graph, message="Draft graph retrieved successfully", request=request)


@router.put(
    "/{workflow_id}/draft-graph",
    response_model=ApiResponse,
    summary="Validate and save the draft graph",
    operation_id="update_workflow_draft_graph",
)
async def update_draft_graph(
    request: Request,
    workflow_id: UUID,
    payload: DraftGraphRequest,
    account_id: AccountId,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
) -> ApiResponse:
    workflow = await workflow_service.update_draft_graph(workflow_id, account_id, payload.model_dump())
    return create_api_response(
        data=workflow.draft_graph,
        message="Draft graph saved successfully",
        request=request,
    )


@router.post(
    "/{workflow_id}/debug",
    summary="Run the draft graph and stream node events",
    operation_id="debug_workflow",
)
async def debug_workflow(
    workflow_id: UUID,
    payload: WorkflowDebugRequest,
    account_id: AccountId,
    runtime: Annotated[Runtime, Depends(get_runtime)],
    session_maker: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_maker)],
) -> StreamingResponse:
    """Server-sent events: ``workflow:started``, one ``workflow:node`` per node
    state change, then ``workflow:completed`` or ``workflow:failed``.

    The run keeps writing after this handler returns, so it gets its own
    session which the stream closes.
    """
    session = session_maker()
    try:
        run = await runtime.workflow_service(session).debug_workflow(workflow_id, account_id, payload.inputs)
    except Exception:
        await session.close()
        raise
    return StreamingResponse(
        stream_debug_run(workflow_id, run, session),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable proxy buffering (Nginx)
        },
        # Covers a client that disconnects before the first frame
        background=BackgroundTask(session.close),
    )


async def stream_debug_run(workflow_id: UUID, run: DebugRun, session: AsyncSession) -> AsyncIterator[str]:
    try:
        yield SSEEvent(
            event_type=SSEEventType.WORKFLOW_STARTED,
            data={"workflow_id": str(workflow_id), "workflow_result_id": str(run.result_id)},
        ).format()
        try:
            async for event in run:
                yield SSEEvent.from_node_event(event).format()
        finally:
            await run.aclose()
    finally:
        await session.close()

    result = run.result
    succeeded = result.status == WorkflowStatus.SUCCEEDED
    yield SSEEvent(
        event_type=SSEEventType.WORKFLOW_COMPLETED if succeeded else SSEEventType.WORKFLOW_FAILED,
        data={
            "workflow_result_id": str(run.result_id),
            "status": result.status.value,
            "outputs": result.outputs,
            "error": result.error,
            "latency": result.latency,
        },
    ).format()


@router.post(
    "/{workflow_id}/publish",
    response_model=ApiResponse,
    summary="Publish the debugged draft graph",
    operation_id="publish_workflow",
)
async def publish_workflow(
    request: Request,
    workflow_id: UUID,
    account_id: AccountId,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
) -> ApiResponse:
    workflow = await workflow_service.publish_workflow(workflow_id, account_id)
    return create_api_response(
        data=WorkflowResponse.from_model(workflow),
        message="Workflow published successfully",
        request=request,
    )


@router.post(
    "/{workflow_id}/cancel-publish",
    response_model=ApiResponse,
    summary="Withdraw the published graph",
    operation_id="cancel_publish_workflow",
)
async def cancel_publish_workflow(
    request: Request,
    workflow_id: UUID,
    account_id: AccountId,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
) -> ApiResponse:
    workflow = await workflow_service.cancel_publish_workflow(workflow_id, account_id)
    return create_api_response(
        data=WorkflowResponse.from_model(workflow),
        message="Workflow publish cancelled",
        request=request,
    )
