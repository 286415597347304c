"""
CommissionRecord model - the system of record for computed splits.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Integer, JSON, String, Text, event
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, CreatedAtMixin
from src.models.billing import BillingPlan, Tier

if TYPE_CHECKING:
    from src.models.audit import AuditLog


class RecordKind(str, Enum):
    """What produced the record."""
    CHARGE = "charge"      # A confirmed payment
    REVERSAL = "reversal"  # Compensating entry for a refund or dispute


class ValidationStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class TransferStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"  # Rejected split, zero amount, or reversal


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to modify or delete a commission record."""


class CommissionRecord(Base, CreatedAtMixin):
    """
    One computed split for one transaction attempt.

    Rows are insert-only. Tier, plan and rates are frozen copies taken
    at calculation time and are never re-resolved. Corrections are new
    REVERSAL rows pointing at the original through reverses_record_id.

    Amounts are integer minor units, rates integer basis points.
    """

    __tablename__ = "commission_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    transaction_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="Payment transaction id, or refund id for reversals",
    )
    kind: Mapped[RecordKind] = mapped_column(
        SQLAlchemyEnum(
            RecordKind,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=RecordKind.CHARGE,
        nullable=False,
    )
    reverses_record_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("commission_records.id"),
        nullable=True,
        index=True,
    )

    # Parties
    payer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    expert_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    clinic_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # Money
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    charge_reference: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Processor charge the transfers are funded from",
    )
    gross_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_rate_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    clinic_rate_bps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    clinic_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    expert_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    # Snapshot at calculation time
    tier_snapshot: Mapped[Optional[Tier]] = mapped_column(
        SQLAlchemyEnum(
            Tier,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    plan_snapshot: Mapped[Optional[BillingPlan]] = mapped_column(
        SQLAlchemyEnum(
            BillingPlan,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    recurring_fee_minor_units: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rate_table_version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Outcome
    validation_status: Mapped[ValidationStatus] = mapped_column(
        SQLAlchemyEnum(
            ValidationStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    rejection_detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transfer_status: Mapped[TransferStatus] = mapped_column(
        SQLAlchemyEnum(
            TransferStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )
    transfer_failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transfer_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processor_transfer_ids: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Processor transfer id per destination role",
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    audit_log_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("audit_logs.id"),
        nullable=True,
    )

    # Relationships
    audit_log: Mapped[Optional["AuditLog"]] = relationship("AuditLog")

    def __repr__(self) -> str:
        return (
            f"<CommissionRecord(id={self.id}, transaction_id={self.transaction_id}, "
            f"kind={self.kind}, validation={self.validation_status}, transfer={self.transfer_status})>"
        )


@event.listens_for(CommissionRecord, "before_update")
def _refuse_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"Commission record {target.transaction_id} is immutable; write a reversal instead"
    )


@event.listens_for(CommissionRecord, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ImmutableRecordError(
        f"Commission record {target.transaction_id} cannot be deleted"
    )
