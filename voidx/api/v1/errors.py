"""Maps service errors to RFC 7807 problem responses."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from voidx.core.exceptions import (
    APIClientError,
    APITimeoutError,
    AppError,
    ConflictError,
    ForbiddenError,
    LockError,
    NotFoundError,
    ValidationError,
)
from voidx.utils.logging import get_logger
from voidx.utils.responses import create_error_detail

LOGGER = get_logger(__name__)

ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST, "Validation Failed"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "Not Found"),
    (ForbiddenError, status.HTTP_403_FORBIDDEN, "Forbidden"),
    (ConflictError, status.HTTP_409_CONFLICT, "Conflict"),
    (LockError, status.HTTP_409_CONFLICT, "Resource Busy"),
    (APITimeoutError, status.HTTP_504_GATEWAY_TIMEOUT, "Upstream Timeout"),
    (APIClientError, status.HTTP_502_BAD_GATEWAY, "Upstream Error"),
)


def status_for(error: AppError) -> tuple:
    for error_class, status_code, title in ERROR_STATUS:
        if isinstance(error, error_class):
            return status_code, title
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    status_code, title = status_for(exc)
    if status_code >= 500:
        LOGGER.error(f"{title}: {exc.message}", exc_info=exc, extra={"path": request.url.path})
    detail = exc.message if status_code != 500 else "An unexpected error occurred"
    error_detail = create_error_detail(title=title, status=status_code, detail=detail, request=request)
    return JSONResponse(status_code=status_code, content=error_detail.model_dump(mode="json"))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
