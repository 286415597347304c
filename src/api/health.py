"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.db import get_db
from src.services.errors import ConfigurationError
from src.services.rate_table import get_rate_table

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health_check():
    """Process is up."""
    return {"status": "healthy", "service": "eleva-splits"}


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """
    Ready to split payments: database reachable and rate table loaded.

    Reports not_ready instead of failing so the orchestrator can poll it.
    """
    checks = {}
    ready = True

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "connected"
    except Exception as e:
        checks["database"] = f"error: {e}"
        ready = False

    try:
        checks["rate_table"] = get_rate_table().version
    except ConfigurationError as e:
        checks["rate_table"] = f"error: {e}"
        ready = False

    return {"status": "ready" if ready else "not_ready", **checks}


@router.get("/live")
async def liveness_check():
    """Container restart probe; no dependencies checked."""
    return {"status": "alive"}
