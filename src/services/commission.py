"""
Commission records: writing and reporting.

Rules:
- Exactly one record per transaction id, whatever the outcome
  (accepted + transferred, accepted + transfer failed, rejected)
- A duplicate transaction id returns the existing record untouched
- Records are never updated; refunds and disputes add reversal rows
- Tier, plan and rate are copied onto the record at calculation time
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models import (
    AuditAction,
    BillingPlan,
    CommissionRecord,
    RecordKind,
    Tier,
    TransferStatus,
    ValidationStatus,
)
from src.services.split_calculator import Split
from src.services.split_validator import ValidationResult
from src.services.transfer_orchestrator import TransferOutcome
from src.utils.audit import log_action

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommissionContext:
    """Who, what currency, and the tier/plan/rate snapshot of a record."""

    expert_id: str
    currency: str
    payer_id: Optional[str] = None
    clinic_id: Optional[str] = None
    charge_reference: Optional[str] = None
    tier: Optional[Tier] = None
    plan: Optional[BillingPlan] = None
    recurring_fee_minor_units: Optional[int] = None
    rate_table_version: Optional[str] = None
    idempotency_key: Optional[str] = None
    kind: RecordKind = RecordKind.CHARGE
    reverses_record_id: Optional[int] = None
    actor: str = "system"
    note: Optional[str] = None


def commission_query(transaction_id: str, for_update: bool = False):
    query = select(CommissionRecord).where(CommissionRecord.transaction_id == transaction_id)
    if for_update:
        # Row lock held until commit; ignored by SQLite
        query = query.with_for_update()
    return query


async def get_commission(
    db: AsyncSession, transaction_id: str, for_update: bool = False
) -> Optional[CommissionRecord]:
    result = await db.execute(commission_query(transaction_id, for_update))
    return result.scalar_one_or_none()


def _audit_action(context: CommissionContext, validation: ValidationResult, transfer: TransferOutcome):
    if context.kind == RecordKind.REVERSAL:
        return AuditAction.COMMISSION_REVERSED
    if not validation.accepted:
        return AuditAction.SPLIT_REJECTED
    if transfer.status == TransferStatus.FAILED:
        return AuditAction.TRANSFER_FAILED
    return AuditAction.COMMISSION_RECORDED


async def record_commission(
    db: AsyncSession,
    transaction_id: str,
    split: Split,
    validation: ValidationResult,
    transfer: TransferOutcome,
    context: CommissionContext,
) -> Tuple[CommissionRecord, bool]:
    """Write the immutable record of one transaction attempt.

    Args:
        db: Database session
        transaction_id: Payment transaction id (refund id for reversals)
        split: Computed split
        validation: Validator outcome
        transfer: Transfer outcome (NOT_ATTEMPTED when rejected)
        context: Parties, currency and tier/plan/rate snapshot

    Returns:
        (record, created) - created is False when the transaction id
        was already recorded and the existing record is returned
    """
    existing = await get_commission(db, transaction_id)
    if existing is not None:
        logger.info(f"Commission for {transaction_id} already recorded (id={existing.id})")
        return existing, False

    audit_entry = await log_action(
        db=db,
        actor=context.actor,
        action=_audit_action(context, validation, transfer),
        target_type="transaction",
        target_id=transaction_id,
        action_metadata={
            "kind": context.kind.value,
            "gross_amount": split.gross_amount,
            "platform_amount": split.platform_amount,
            "clinic_amount": split.clinic_amount,
            "expert_amount": split.expert_amount,
            "validation": validation.reason.value if validation.reason else "accepted",
            "transfer_status": transfer.status.value,
            "note": context.note,
        },
    )

    record = CommissionRecord(
        transaction_id=transaction_id,
        kind=context.kind,
        reverses_record_id=context.reverses_record_id,
        payer_id=context.payer_id,
        expert_id=context.expert_id,
        clinic_id=context.clinic_id,
        currency=context.currency.lower(),
        charge_reference=context.charge_reference,
        gross_amount=split.gross_amount,
        platform_rate_bps=split.platform_rate_bps,
        platform_amount=split.platform_amount,
        clinic_rate_bps=split.clinic_rate_bps,
        clinic_amount=split.clinic_amount if split.has_clinic else None,
        expert_amount=split.expert_amount,
        tier_snapshot=context.tier,
        plan_snapshot=context.plan,
        recurring_fee_minor_units=context.recurring_fee_minor_units,
        rate_table_version=context.rate_table_version,
        validation_status=ValidationStatus.ACCEPTED if validation.accepted else ValidationStatus.REJECTED,
        rejection_reason=validation.reason.value if validation.reason else None,
        rejection_detail=validation.detail,
        transfer_status=transfer.status,
        transfer_failure_reason=transfer.failure_reason,
        transfer_attempts=transfer.attempts,
        processor_transfer_ids=transfer.transfer_ids or None,
        idempotency_key=context.idempotency_key,
    )

    try:
        await db.flush()
        record.audit_log_id = audit_entry.id
        db.add(record)
        await db.flush()
    except IntegrityError:
        # Concurrent delivery of the same transaction won the insert
        await db.rollback()
        existing = await get_commission(db, transaction_id)
        if existing is None:
            raise
        logger.info(f"Commission for {transaction_id} written concurrently (id={existing.id})")
        return existing, False

    logger.info(
        f"Commission recorded for {transaction_id}: kind={record.kind.value} "
        f"validation={record.validation_status.value} transfer={record.transfer_status.value} "
        f"platform={record.platform_amount} clinic={record.clinic_amount} expert={record.expert_amount}"
    )
    return record, True


async def get_reversals(db: AsyncSession, record_id: int) -> List[CommissionRecord]:
    result = await db.execute(
        select(CommissionRecord)
        .where(CommissionRecord.reverses_record_id == record_id)
        .order_by(CommissionRecord.created_at)
    )
    return list(result.scalars().all())


async def get_commission_history(
    db: AsyncSession,
    expert_id: str,
    limit: int = 50,
) -> List[CommissionRecord]:
    """Newest-first records (charges and reversals) for an expert."""
    result = await db.execute(
        select(CommissionRecord)
        .where(CommissionRecord.expert_id == expert_id)
        .order_by(CommissionRecord.created_at.desc(), CommissionRecord.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def calculate_total_commissions(
    db: AsyncSession,
    expert_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    """
    Totals for an expert's accepted charges, net of reversals.

    Returns:
        Dict with total_platform_fees, total_clinic_fees,
        total_gross_revenue, total_net_revenue and transaction_count
    """
    sign = case((CommissionRecord.kind == RecordKind.REVERSAL, -1), else_=1)
    is_charge = case((CommissionRecord.kind == RecordKind.CHARGE, 1), else_=0)

    query = select(
        func.coalesce(func.sum(CommissionRecord.platform_amount * sign), 0).label("platform"),
        func.coalesce(func.sum(func.coalesce(CommissionRecord.clinic_amount, 0) * sign), 0).label("clinic"),
        func.coalesce(func.sum(CommissionRecord.gross_amount * sign), 0).label("gross"),
        func.coalesce(func.sum(CommissionRecord.expert_amount * sign), 0).label("net"),
        func.coalesce(func.sum(is_charge), 0).label("count"),
    ).where(
        CommissionRecord.expert_id == expert_id,
        CommissionRecord.validation_status == ValidationStatus.ACCEPTED,
    )
    if start_date:
        query = query.where(CommissionRecord.created_at >= start_date)
    if end_date:
        query = query.where(CommissionRecord.created_at <= end_date)

    row = (await db.execute(query)).one()
    return {
        "expert_id": expert_id,
        "total_platform_fees": int(row.platform),
        "total_clinic_fees": int(row.clinic),
        "total_gross_revenue": int(row.gross),
        "total_net_revenue": int(row.net),
        "transaction_count": int(row.count),
    }


async def list_commission_records(
    db: AsyncSession,
    expert_id: Optional[str] = None,
    clinic_id: Optional[str] = None,
    validation_status: Optional[ValidationStatus] = None,
    transfer_status: Optional[TransferStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    per_page: int = 20,
) -> Tuple[List[CommissionRecord], int]:
    """Filtered, paginated records, newest first. Returns (items, total)."""
    query = select(CommissionRecord)

    if expert_id:
        query = query.where(CommissionRecord.expert_id == expert_id)
    if clinic_id:
        query = query.where(CommissionRecord.clinic_id == clinic_id)
    if validation_status:
        query = query.where(CommissionRecord.validation_status == validation_status)
    if transfer_status:
        query = query.where(CommissionRecord.transfer_status == transfer_status)
    if start_date:
        query = query.where(CommissionRecord.created_at >= start_date)
    if end_date:
        query = query.where(CommissionRecord.created_at <= end_date)

    # Count total
    count_query = select(func.count()).select_from(query.subquery())
    total = await db.scalar(count_query)

    # Apply sorting and pagination
    query = query.order_by(CommissionRecord.created_at.desc(), CommissionRecord.id.desc())
    query = query.offset((page - 1) * per_page).limit(per_page)

    result = await db.execute(query)
    return list(result.scalars().all()), total or 0
