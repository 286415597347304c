"""
AuditLog model for the immutable audit ledger.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, JSON, String, func
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, utcnow


class AuditAction(str, Enum):
    """Types of auditable actions."""
    COMMISSION_RECORDED = "commission_recorded"
    SPLIT_REJECTED = "split_rejected"
    TRANSFER_FAILED = "transfer_failed"
    COMMISSION_REVERSED = "commission_reversed"
    PLAN_CHANGED = "plan_changed"


class AuditLog(Base):
    """
    Append-only audit log.

    Every commission record links to the entry written alongside it,
    so the money trail can be followed from either side.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    actor: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="system",
        comment="Who triggered the action (system, ops key, webhook)",
    )
    action: Mapped[AuditAction] = mapped_column(
        SQLAlchemyEnum(
            AuditAction,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )
    target_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Type of entity affected (transaction, billing_entity, etc)",
    )
    target_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Identifier of the affected entity",
    )
    action_metadata: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Additional context about the action",
    )
    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45),
        nullable=True,
        comment="IPv4 or IPv6 address",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, target_id={self.target_id})>"
