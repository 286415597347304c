"""
FastAPI dependencies for internal API access.

User authentication lives in the surrounding application; this
service only checks the shared key its callers present.
"""

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from src.config import settings

logger = logging.getLogger(__name__)


async def require_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> str:
    """
    Require the internal API key.

    Returns the caller label used as audit actor. With no key
    configured the check is skipped outside production.
    """
    expected = settings.internal_api_key
    if not expected:
        if settings.is_production:
            logger.error("INTERNAL_API_KEY is not configured in production")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Internal API key not configured",
            )
        return "dev"

    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )

    return "internal_api"
