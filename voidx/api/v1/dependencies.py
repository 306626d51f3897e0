"""FastAPI dependencies: caller identity and session-scoped services."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from voidx.core.database import get_async_session
from voidx.runtime import Runtime
from voidx.services.dataset_service import DatasetService
from voidx.services.document_service import DocumentService
from voidx.services.workflow_service import WorkflowService
from voidx.utils.responses import create_error_detail


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        error_detail = create_error_detail(
            title="Service Unavailable",
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application runtime is not initialized",
            request=request,
        )
        raise HTTPException(status_code=503, detail=error_detail.model_dump(mode="json"))
    return runtime


async def get_account_id(
    request: Request,
    x_account_id: Annotated[Optional[str], Header()] = None,
) -> UUID:
    """Account of the caller, set by the gateway in front of the API."""
    if not x_account_id:
        error_detail = create_error_detail(
            title="Unauthorized",
            status=status.HTTP_401_UNAUTHORIZED,
            detail="X-Account-Id header is required",
            request=request,
        )
        raise HTTPException(status_code=401, detail=error_detail.model_dump(mode="json"))
    try:
        return UUID(x_account_id)
    except ValueError:
        error_detail = create_error_detail(
            title="Bad Request",
            status=status.HTTP_400_BAD_REQUEST,
            detail="X-Account-Id must be a UUID",
            request=request,
        )
        raise HTTPException(status_code=400, detail=error_detail.model_dump(mode="json"))


async def get_workflow_service(
    db_session: Annotated[AsyncSession, Depends(get_async_session)],
    runtime: Annotated[Runtime, Depends(get_runtime)],
) -> WorkflowService:
    return runtime.workflow_service(db_session)


async def get_dataset_service(
    db_session: Annotated[AsyncSession, Depends(get_async_session)],
    runtime: Annotated[Runtime, Depends(get_runtime)],
) -> DatasetService:
    return runtime.dataset_service(db_session)


async def get_document_service(
    db_session: Annotated[AsyncSession, Depends(get_async_session)],
    runtime: Annotated[Runtime, Depends(get_runtime)],
) -> DocumentService:
    return runtime.document_service(db_session)


AccountId = Annotated[UUID, Depends(get_account_id)]
