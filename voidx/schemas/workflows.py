"""Workflow API request and response models."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from voidx.schemas.common import Paginator


class WorkflowCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, description="Display name")
    tool_call_name: str = Field(..., description="Name the workflow is invoked by as a tool")
    icon: str = Field(default="", description="Icon URL")
    description: str = Field(default="", max_length=1024, description="What the workflow does")


class WorkflowUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    tool_call_name: Optional[str] = None
    icon: Optional[str] = None
    description: Optional[str] = Field(None, max_length=1024)


class WorkflowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    tool_call_name: str
    icon: str
    description: str
    status: str
    is_debug_passed: bool
    node_count: int = Field(default=0, description="Nodes in the published graph, else the draft")
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, workflow: Any) -> "WorkflowResponse":
        response = cls.model_validate(workflow)
        graph = workflow.graph if (workflow.graph or {}).get("nodes") else workflow.draft_graph
        response.node_count = len((graph or {}).get("nodes") or [])
        return response


class WorkflowListResponse(BaseModel):
    items: List[WorkflowResponse] = Field(default_factory=list)
    paginator: Paginator


class DraftGraphRequest(BaseModel):
    nodes: List[Dict[str, Any]] = Field(default_factory=list, description="Graph nodes")
    edges: List[Dict[str, Any]] = Field(default_factory=list, description="Graph edges")


class WorkflowDebugRequest(BaseModel):
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Values for the start node inputs")
