"""API Routes."""

from fastapi import APIRouter

from .billing import router as billing_router
from .health import router as health_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(billing_router)
