"""Response envelope, RFC 7807 error body and pagination shared by all endpoints."""

from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ResponseMeta(BaseModel):
    timestamp: datetime = Field(..., description="Response creation time")
    request_id: str = Field(..., description="Request correlation ID")
    api_version: str = Field(default="v1", description="API version")


class ApiResponse(BaseModel):
    """Standard success envelope."""

    status: bool = Field(default=True, description="Whether the operation succeeded")
    message: str = Field(default="Operation successful", description="Human-readable message")
    data: Dict[str, Any] = Field(default_factory=dict, description="Payload")
    meta: Optional[ResponseMeta] = Field(None, description="Response metadata")


class ErrorDetail(BaseModel):
    """Problem details body (RFC 7807)."""

    type: str = Field(default="about:blank", description="Problem type URI")
    title: str = Field(..., description="Short summary of the problem")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Explanation specific to this occurrence")
    instance: Optional[str] = Field(None, description="Request path")
    request_id: Optional[str] = Field(None, description="Request correlation ID")
    timestamp: Optional[datetime] = Field(None, description="Time of the error")


class Paginator(BaseModel):
    current_page: int = Field(default=1, ge=1, description="1-based page number")
    page_size: int = Field(default=20, ge=1, le=50, description="Rows per page")
    total_page: int = Field(default=0, description="Number of pages")
    total_record: int = Field(default=0, description="Number of matching rows")

    @classmethod
    def build(cls, current_page: int, page_size: int, total_record: int) -> "Paginator":
        total_page = (total_record + page_size - 1) // page_size if page_size else 0
        return cls(current_page=current_page, page_size=page_size, total_page=total_page, total_record=total_record)


class PageResponse(BaseModel, Generic[T]):
    items: List[T] = Field(default_factory=list, description="Rows on the page")
    paginator: Paginator = Field(default_factory=Paginator)
