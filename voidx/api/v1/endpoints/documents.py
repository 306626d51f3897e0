from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from voidx.api.v1.dependencies import AccountId, get_document_service
from voidx.schemas.common import ApiResponse
from voidx.schemas.datasets import DocumentCreateRequest, DocumentEnabledRequest, DocumentResponse
from voidx.services.document_service import DocumentService
from voidx.utils.logging import get_logger
from voidx.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "/{dataset_id}/documents",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Add uploaded files to a dataset",
    operation_id="create_documents",
)
async def create_documents(
    request: Request,
    dataset_id: UUID,
    payload: DocumentCreateRequest,
    account_id: AccountId,
    document_service: Annotated[DocumentService, Depends(get_document_service)],
) -> ApiResponse:
    """Create documents and schedule their indexing."""
    documents, batch = await document_service.create_documents(
        account_id=account_id,
        dataset_id=dataset_id,
        upload_file_ids=payload.upload_file_ids,
        process_type=payload.process_type,
        rule=payload.rule,
    )
    return create_api_response(
        data={
            "batch": batch,
            "documents": [DocumentResponse.model_validate(document).model_dump(mode="json") for document in documents],
        },
        message="Documents scheduled for indexing",
        request=request,
    )


@router.put(
    "/{dataset_id}/documents/{document_id}/enabled",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enable or disable a document",
    operation_id="update_document_enabled",
)
async def update_document_enabled(
    request: Request,
    dataset_id: UUID,
    document_id: UUID,
    payload: DocumentEnabledRequest,
    account_id: AccountId,
    document_service: Annotated[DocumentService, Depends(get_document_service)],
) -> ApiResponse:
    document = await document_service.update_document_enabled(account_id, dataset_id, document_id, payload.enabled)
    return create_api_response(
        data=DocumentResponse.model_validate(document),
        message="Document status change scheduled",
        request=request,
    )


@router.delete(
    "/{dataset_id}/documents/{document_id}",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Delete a document",
    operation_id="delete_document",
)
async def delete_document(
    request: Request,
    dataset_id: UUID,
    document_id: UUID,
    account_id: AccountId,
    document_service: Annotated[DocumentService, Depends(get_document_service)],
) -> ApiResponse:
    await document_service.delete_document(account_id, dataset_id, document_id)
    return create_api_response(
        data={"document_id": str(document_id)},
        message="Document deletion scheduled",
        request=request,
    )
