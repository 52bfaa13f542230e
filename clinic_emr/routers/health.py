"""Health check endpoints."""

from fastapi import APIRouter
from clinic_emr.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "clinic-emr",
        "environment": settings.ENVIRONMENT,
    }
