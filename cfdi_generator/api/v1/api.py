"""
API router aggregation for v1 endpoints
"""
from fastapi import APIRouter

from cfdi_generator.api.v1.endpoints import documents
from cfdi_generator.core.config import settings

api_router = APIRouter()

api_router.include_router(documents.router)


@api_router.get("/")
async def root():
    """API root endpoint"""
    return {
        "message": f"{settings.PROJECT_NAME} v1",
        "version": settings.VERSION,
        "docs": "/docs"
    }
