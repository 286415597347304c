"""
Database models for the split engine.

All models are exported here for convenient imports:
    from src.models import CommissionRecord, SubscriptionPlan, etc.
"""

from src.models.audit import AuditAction, AuditLog
from src.models.base import Base, CreatedAtMixin, TimestampMixin, utcnow
from src.models.billing import (
    BillingPlan,
    ClinicSettings,
    ExpertAccount,
    ExpertTier,
    SubscriptionPlan,
    Tier,
)
from src.models.commission import (
    CommissionRecord,
    ImmutableRecordError,
    RecordKind,
    TransferStatus,
    ValidationStatus,
)

__all__ = [
    # Base
    "Base",
    "CreatedAtMixin",
    "TimestampMixin",
    "utcnow",
    # Billing
    "BillingPlan",
    "Tier",
    "SubscriptionPlan",
    "ExpertTier",
    "ExpertAccount",
    "ClinicSettings",
    # Commission
    "CommissionRecord",
    "ImmutableRecordError",
    "RecordKind",
    "TransferStatus",
    "ValidationStatus",
    # Audit
    "AuditLog",
    "AuditAction",
]
