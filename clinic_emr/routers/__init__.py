"""FastAPI routers."""

from clinic_emr.routers.health import router as health_router

__all__ = ["health_router"]
