from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status

from voidx.api.v1.dependencies import AccountId, get_dataset_service
from voidx.schemas.common import ApiResponse
from voidx.schemas.datasets import (
    DatasetCreateRequest,
    DatasetQueryResponse,
    DatasetResponse,
    HitResponse,
    HitTestingRequest,
)
from voidx.services.dataset_service import DatasetService
from voidx.utils.logging import get_logger
from voidx.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "/",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a dataset",
    operation_id="create_dataset",
)
async def create_dataset(
    request: Request,
    payload: DatasetCreateRequest,
    account_id: AccountId,
    dataset_service: Annotated[DatasetService, Depends(get_dataset_service)],
) -> ApiResponse:
    dataset = await dataset_service.create_dataset(
        account_id=account_id,
        name=payload.name,
        description=payload.description,
        icon=payload.icon,
    )
    return create_api_response(
        data=DatasetResponse.model_validate(dataset),
        message="Dataset created successfully",
        request=request,
    )


@router.delete(
    "/{dataset_id}",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Delete a dataset",
    operation_id="delete_dataset",
)
async def delete_dataset(
    request: Request,
    dataset_id: UUID,
    account_id: AccountId,
    dataset_service: Annotated[DatasetService, Depends(get_dataset_service)],
) -> ApiResponse:
    """Schedule the dataset and everything indexed under it for deletion."""
    await dataset_service.delete_dataset(account_id, dataset_id)
    return create_api_response(
        data={"dataset_id": str(dataset_id)},
        message="Dataset deletion scheduled",
        request=request,
    )


@router.post(
    "/{dataset_id}/hit",
    response_model=ApiResponse,
    summary="Run a test search against a dataset",
    operation_id="dataset_hit_testing",
)
async def hit_testing(
    request: Request,
    dataset_id: UUID,
    payload: HitTestingRequest,
    account_id: AccountId,
    dataset_service: Annotated[DatasetService, Depends(get_dataset_service)],
) -> ApiResponse:
    hits = await dataset_service.hit_testing(
        account_id=account_id,
        dataset_id=dataset_id,
        query=payload.query,
        retrieval_strategy=payload.retrieval_strategy,
        k=payload.k,
        score=payload.score,
    )
    return create_api_response(
        data=[HitResponse.model_validate(hit) for hit in hits],
        message=f"Found {len(hits)} segment(s)",
        request=request,
    )


@router.get(
    "/{dataset_id}/queries",
    response_model=ApiResponse,
    summary="Recent queries against a dataset",
    operation_id="list_dataset_queries",
)
async def get_recent_queries(
    request: Request,
    dataset_id: UUID,
    account_id: AccountId,
    dataset_service: Annotated[DatasetService, Depends(get_dataset_service)],
    limit: int = Query(10, ge=1, le=50),
) -> ApiResponse:
    queries = await dataset_service.get_recent_queries(account_id, dataset_id, limit=limit)
    return create_api_response(
        data=[DatasetQueryResponse.model_validate(query) for query in queries],
        message="Queries retrieved successfully",
        request=request,
    )
