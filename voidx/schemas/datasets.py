"""Dataset and document API request and response models."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DatasetCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Dataset name, unique per account")
    description: str = Field(default="", max_length=2000)
    icon: str = Field(default="")


class DatasetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    icon: str
    description: str
    created_at: Optional[datetime] = None


class HitTestingRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=200, description="Search text")
    retrieval_strategy: str = Field(default="semantic", description="semantic, full_text or hybrid")
    k: int = Field(default=4, ge=1, le=10, description="Maximum number of hits")
    score: float = Field(default=0.0, ge=0.0, le=0.99, description="Minimum similarity score")


class HitResponse(BaseModel):
    segment_id: Optional[UUID] = None
    document_id: Optional[UUID] = None
    content: str
    score: float = 0.0
    retrieval_method: str = ""
    position: Optional[int] = None
    keywords: List[str] = Field(default_factory=list)
    hit_count: int = 0


class DatasetQueryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    query: str
    source: str
    created_at: Optional[datetime] = None


class DocumentCreateRequest(BaseModel):
    upload_file_ids: List[UUID] = Field(..., min_length=1, max_length=10, description="Uploaded files to index")
    process_type: str = Field(default="automatic", description="automatic or custom")
    rule: Optional[Dict[str, Any]] = Field(None, description="Custom process rule")


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    dataset_id: UUID
    name: str
    position: int
    status: str
    enabled: bool
    error: str = ""
    character_count: int = 0
    token_count: int = 0
    created_at: Optional[datetime] = None


class DocumentEnabledRequest(BaseModel):
    enabled: bool
