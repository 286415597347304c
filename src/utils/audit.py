"""
Audit log helpers.

Every commission record and plan change writes one AuditLog row in the
same session as the change it describes.
"""

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.audit import AuditAction, AuditLog

logger = logging.getLogger(__name__)


async def log_action(
    db: AsyncSession,
    action: AuditAction,
    actor: str = "system",
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    action_metadata: Optional[dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """
    Add an audit entry to the session.

    The caller flushes or commits; a flush is needed before the entry
    id can be linked from a commission record.
    """
    entry = AuditLog(
        actor=actor,
        action=action,
        target_type=target_type,
        target_id=target_id,
        action_metadata=action_metadata,
        ip_address=ip_address,
    )
    db.add(entry)
    logger.debug(f"Audit {action.value} on {target_type}:{target_id} by {actor}")
    return entry


def get_client_ip(request) -> Optional[str]:
    """Client IP, honouring the first X-Forwarded-For hop behind a proxy."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None
