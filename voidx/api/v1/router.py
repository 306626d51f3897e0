from fastapi import APIRouter

from voidx.api.v1.endpoints import datasets, documents, workflows

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(datasets.router, prefix="/datasets", tags=["Datasets"])
api_router.include_router(documents.router, prefix="/datasets", tags=["Documents"])
api_router.include_router(workflows.router, prefix="/workflows", tags=["Workflows"])

__all__ = ["api_router"]
