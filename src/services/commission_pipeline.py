"""
Per-transaction commission pipeline.

resolve rate -> compute split -> validate -> transfer -> record

Reads and calculation finish before the processor call, and the
record is written in a fresh session after it, so no database
transaction is held open across the external call. At-least-once
delivery is made safe by the stable idempotency key and the unique
transaction id on commission records. Refunds lock the original
record so concurrent partial refunds cannot over-reverse it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from src.db import get_db_context
from src.models import BillingPlan, CommissionRecord, RecordKind, Tier, ValidationStatus
from src.schemas.payment import PaymentConfirmedEvent, RefundEvent
from src.services.billing import (
    get_active_plan,
    get_active_tier,
    get_clinic_settings,
    get_expert_account,
    tier_from_role,
)
from src.services.commission import (
    CommissionContext,
    get_commission,
    get_reversals,
    record_commission,
)
from src.services.errors import InvalidRefund
from src.services.payment_processor import get_payment_processor
from src.services.rate_resolver import resolve_rate
from src.services.rate_table import RateTable, RateTableEntry
from src.services.split_calculator import Split, compute_reversal_split
from src.services.split_validator import SplitPolicy, ValidationResult, compute_and_validate
from src.services.transfer_orchestrator import (
    CLINIC,
    EXPERT,
    TransferOrchestrator,
    TransferOutcome,
    derive_idempotency_key,
)
from src.utils.dates import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    record: CommissionRecord
    duplicate: bool = False


def preview_split(
    tier: Tier,
    plan: BillingPlan,
    gross_amount: int,
    clinic_rate_bps: Optional[int] = None,
    as_of: Optional[datetime] = None,
    policy: Optional[SplitPolicy] = None,
    table: Optional[RateTable] = None,
) -> Tuple[RateTableEntry, Split, ValidationResult]:
    """Resolve, compute and validate without persisting or moving money."""
    entry = resolve_rate(tier, plan, as_of, table)
    split, validation = compute_and_validate(
        gross_amount, entry.commission_rate_bps, clinic_rate_bps, policy or SplitPolicy.from_settings()
    )
    return entry, split, validation


def _unreversed(original: CommissionRecord, reversals) -> Split:
    """Shares of a charge not yet taken back by earlier reversals."""
    return Split(
        gross_amount=original.gross_amount - sum(r.gross_amount for r in reversals),
        platform_rate_bps=original.platform_rate_bps,
        platform_amount=original.platform_amount - sum(r.platform_amount for r in reversals),
        clinic_rate_bps=original.clinic_rate_bps,
        clinic_amount=(original.clinic_amount or 0) - sum(r.clinic_amount or 0 for r in reversals),
        expert_amount=original.expert_amount - sum(r.expert_amount for r in reversals),
    )


class CommissionPipeline:
    """Runs payment-confirmed and refund events through the engine."""

    def __init__(
        self,
        session_factory: Callable = get_db_context,
        orchestrator: Optional[TransferOrchestrator] = None,
        policy: Optional[SplitPolicy] = None,
        rate_table: Optional[RateTable] = None,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator or TransferOrchestrator(get_payment_processor())
        self.policy = policy or SplitPolicy.from_settings()
        self.rate_table = rate_table

    async def process_payment(self, event: PaymentConfirmedEvent) -> PipelineResult:
        """Split one confirmed payment and record the outcome.

        Raises:
            ConfigurationError: missing rate, plan, tier or clinic settings
            InputError: malformed gross amount
        """
        transaction_id = event.transaction_id
        as_of = as_utc(event.occurred_at) if event.occurred_at else datetime.now(timezone.utc)
        idempotency_key = derive_idempotency_key(transaction_id)

        # Phase 1: reads only
        async with self.session_factory() as db:
            existing = await get_commission(db, transaction_id)
            if existing is not None:
                logger.info(f"Duplicate delivery of {transaction_id}; returning record {existing.id}")
                return PipelineResult(record=existing, duplicate=True)

            if event.expert_role:
                tier = tier_from_role(event.expert_role, event.expert_id)
            else:
                tier = (await get_active_tier(db, event.expert_id, as_of)).tier
            plan = (await get_active_plan(db, event.expert_id, as_of)).plan

            clinic = None
            if event.clinic_id:
                clinic = await get_clinic_settings(db, event.clinic_id)
            expert_account = await get_expert_account(db, event.expert_id)

        entry = resolve_rate(tier, plan, as_of, self.rate_table)
        split, validation = compute_and_validate(
            event.gross_amount,
            entry.commission_rate_bps,
            clinic.clinic_fee_rate_bps if clinic else None,
            self.policy,
        )

        # Phase 2: money movement, no session open
        if validation.accepted:
            destinations = {
                EXPERT: expert_account.destination_account_id if expert_account else None,
                CLINIC: clinic.destination_account_id if clinic else None,
            }
            transfer = await self.orchestrator.execute_transfer(
                split,
                destinations,
                idempotency_key,
                currency=event.currency,
                charge_reference=event.charge_reference,
                metadata={"transaction_id": transaction_id, "expert_id": event.expert_id},
            )
        else:
            transfer = TransferOutcome.not_attempted("validation_rejected")

        # Phase 3: record, whatever happened above
        context = CommissionContext(
            expert_id=event.expert_id,
            currency=event.currency,
            payer_id=event.payer_id,
            clinic_id=event.clinic_id,
            charge_reference=event.charge_reference,
            tier=entry.tier,
            plan=entry.plan,
            recurring_fee_minor_units=entry.recurring_fee_minor_units,
            rate_table_version=entry.version,
            idempotency_key=idempotency_key,
        )
        async with self.session_factory() as db:
            record, created = await record_commission(
                db, transaction_id, split, validation, transfer, context
            )
        return PipelineResult(record=record, duplicate=not created)

    async def process_refund(self, event: RefundEvent) -> PipelineResult:
        """Write a compensating reversal for a refunded or disputed charge.

        The reversal split reuses the rates frozen on the original record
        and never takes back more of a share than is left of it. The
        original row stays locked until the reversal is committed.

        Raises:
            InvalidRefund: unknown or non-refundable original, or the
                amount exceeds what is left to reverse
        """
        async with self.session_factory() as db:
            existing = await get_commission(db, event.refund_id)
            if existing is not None:
                if existing.reverses_record_id is None:
                    raise InvalidRefund(f"{event.refund_id} is already used by a charge record")
                logger.info(f"Duplicate refund {event.refund_id}; returning record {existing.id}")
                return PipelineResult(record=existing, duplicate=True)

            original = await get_commission(db, event.transaction_id, for_update=True)
            if original is None:
                raise InvalidRefund(f"No commission record for transaction {event.transaction_id}")
            if original.kind != RecordKind.CHARGE:
                raise InvalidRefund(f"{event.transaction_id} is a reversal and cannot be refunded")
            if original.validation_status != ValidationStatus.ACCEPTED:
                raise InvalidRefund(f"{event.transaction_id} was rejected; nothing to reverse")

            remaining = _unreversed(original, await get_reversals(db, original.id))
            amount = event.amount if event.amount is not None else remaining.gross_amount
            if amount <= 0 or amount > remaining.gross_amount:
                raise InvalidRefund(
                    f"Refund of {amount} exceeds remaining {remaining.gross_amount} on {event.transaction_id}"
                )

            split = compute_reversal_split(amount, remaining)
            context = CommissionContext(
                expert_id=original.expert_id,
                currency=original.currency,
                payer_id=original.payer_id,
                clinic_id=original.clinic_id,
                charge_reference=original.charge_reference,
                tier=original.tier_snapshot,
                plan=original.plan_snapshot,
                recurring_fee_minor_units=original.recurring_fee_minor_units,
                rate_table_version=original.rate_table_version,
                kind=RecordKind.REVERSAL,
                reverses_record_id=original.id,
                note=event.reason,
            )
            record, created = await record_commission(
                db,
                event.refund_id,
                split,
                ValidationResult.accept(),
                TransferOutcome.not_attempted("reversal"),
                context,
            )
        return PipelineResult(record=record, duplicate=not created)
