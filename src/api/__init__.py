"""API router aggregation."""

from fastapi import APIRouter

from src.api.billing import router as billing_router
from src.api.commissions import router as commissions_router
from src.api.health import router as health_router
from src.api.webhooks import router as webhooks_router

# Main API router (for /api/* endpoints)
api_router = APIRouter(prefix="/api")

# Include API sub-routers
api_router.include_router(health_router)
api_router.include_router(webhooks_router)
api_router.include_router(commissions_router)
api_router.include_router(billing_router)

__all__ = ["api_router"]
