"""
Tests for the end-to-end commission pipeline.

Covers:
- Accepted splits with and without a clinic
- Rejected splits recorded without a transfer
- Zero gross and duplicate delivery
- Configuration errors stop the pipeline
- Transfer failures recorded, never raised
- Refund and dispute reversals, netting to zero when refunded in pieces
- Clinic rates outside the policy recorded as rejections
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql

from src.models import (
    AuditLog,
    BillingPlan,
    ClinicSettings,
    CommissionRecord,
    ExpertAccount,
    ExpertTier,
    RecordKind,
    SubscriptionPlan,
    Tier,
    TransferStatus,
    ValidationStatus,
)
from src.schemas.payment import PaymentConfirmedEvent, RefundEvent
from src.services import commission_pipeline
from src.services.commission import calculate_total_commissions, commission_query
from src.services.commission_pipeline import CommissionPipeline, preview_split
from src.services.errors import (
    InvalidRefund,
    NoActivePlan,
    NoActiveTier,
    TransientProcessorError,
    UnknownClinic,
)
from src.services.payment_processor import PaymentProcessor
from src.services.rate_table import builtin_rate_table
from src.services.split_validator import RejectionReason, SplitPolicy
from src.services.transfer_orchestrator import TransferOrchestrator

START = datetime(2025, 1, 1, tzinfo=timezone.utc)
PAID_AT = datetime(2025, 6, 1, 10, 30, tzinfo=timezone.utc)


class FakeProcessor(PaymentProcessor):
    def __init__(self, errors=()):
        self.errors = list(errors)
        self.requests = []

    async def create_transfers(self, request):
        self.requests.append(request)
        if self.errors:
            raise self.errors.pop(0)
        return {i.role: f"tr_{request.idempotency_key}_{i.role}" for i in request.instructions}

    async def reverse_transfers(self, request, transfer_ids):
        return dict(transfer_ids)


async def _no_sleep(delay):
    return None


def _event(**kwargs):
    defaults = {
        "transaction_id": "tx_1",
        "gross_amount": 10000,
        "currency": "EUR",
        "payer_id": "pat_1",
        "expert_id": "exp_top",
        "charge_reference": "ch_1",
        "occurred_at": PAID_AT,
    }
    defaults.update(kwargs)
    return PaymentConfirmedEvent(**defaults)


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def pipeline(session_factory, processor):
    orchestrator = TransferOrchestrator(processor, max_attempts=3, sleep=_no_sleep)
    return CommissionPipeline(
        session_factory=session_factory,
        orchestrator=orchestrator,
        policy=SplitPolicy(),
        rate_table=builtin_rate_table(),
    )


@pytest_asyncio.fixture
async def billing_data(session_factory):
    async with session_factory() as db:
        db.add_all([
            ExpertTier(expert_id="exp_top", tier=Tier.TOP, started_at=START),
            SubscriptionPlan(billing_entity_id="exp_top", plan=BillingPlan.ANNUAL, started_at=START),
            ExpertAccount(expert_id="exp_top", destination_account_id="acct_top"),
            ExpertTier(expert_id="exp_comm", tier=Tier.COMMUNITY, started_at=START),
            SubscriptionPlan(billing_entity_id="exp_comm", plan=BillingPlan.COMMISSION, started_at=START),
            ExpertAccount(expert_id="exp_comm", destination_account_id="acct_comm"),
            ExpertTier(expert_id="exp_no_acct", tier=Tier.TOP, started_at=START),
            SubscriptionPlan(billing_entity_id="exp_no_acct", plan=BillingPlan.ANNUAL, started_at=START),
            ClinicSettings(clinic_id="cl_15", clinic_fee_rate_bps=1500, destination_account_id="acct_cl_15"),
            ClinicSettings(clinic_id="cl_25", clinic_fee_rate_bps=2500, destination_account_id="acct_cl_25"),
            ClinicSettings(clinic_id="cl_30", clinic_fee_rate_bps=3000, destination_account_id="acct_cl_30"),
        ])


async def _count_records(session_factory):
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(CommissionRecord))


# ── process_payment ──────────────────────────────────────


class TestProcessPayment:
    @pytest.mark.asyncio
    async def test_top_annual_without_clinic(self, pipeline, processor, billing_data):
        result = await pipeline.process_payment(_event())
        record = result.record

        assert not result.duplicate
        assert record.platform_rate_bps == 800
        assert record.platform_amount == 800
        assert record.expert_amount == 9200
        assert record.clinic_amount is None
        assert record.tier_snapshot == Tier.TOP
        assert record.plan_snapshot == BillingPlan.ANNUAL
        assert record.recurring_fee_minor_units == 177400
        assert record.rate_table_version == "2025-01"
        assert record.validation_status == ValidationStatus.ACCEPTED
        assert record.transfer_status == TransferStatus.SUCCEEDED
        assert record.idempotency_key == "split:tx_1"

        request = processor.requests[0]
        assert [(i.role, i.destination_account_id, i.amount) for i in request.instructions] == [
            ("expert", "acct_top", 9200),
        ]
        assert request.currency == "eur"

    @pytest.mark.asyncio
    async def test_community_with_clinic(self, pipeline, processor, billing_data):
        result = await pipeline.process_payment(_event(expert_id="exp_comm", clinic_id="cl_15"))
        record = result.record

        assert record.platform_amount == 2000
        assert record.clinic_amount == 1500
        assert record.expert_amount == 6500
        assert record.clinic_rate_bps == 1500
        assert record.transfer_status == TransferStatus.SUCCEEDED
        assert record.processor_transfer_ids == {
            "clinic": "tr_split:tx_1_clinic",
            "expert": "tr_split:tx_1_expert",
        }

    @pytest.mark.asyncio
    async def test_fee_ceiling_rejection_records_without_transfer(self, pipeline, processor, billing_data):
        result = await pipeline.process_payment(_event(expert_id="exp_comm", clinic_id="cl_25"))
        record = result.record

        assert record.validation_status == ValidationStatus.REJECTED
        assert record.rejection_reason == RejectionReason.AGGREGATE_FEE_EXCEEDS_MAXIMUM.value
        assert record.transfer_status == TransferStatus.NOT_ATTEMPTED
        assert processor.requests == []

    @pytest.mark.asyncio
    async def test_clinic_rate_outside_policy_rejected(self, pipeline, processor, billing_data):
        result = await pipeline.process_payment(_event(clinic_id="cl_30"))
        record = result.record

        assert record.validation_status == ValidationStatus.REJECTED
        assert record.rejection_reason == RejectionReason.CLINIC_RATE_OUT_OF_RANGE.value
        assert record.transfer_status == TransferStatus.NOT_ATTEMPTED
        assert processor.requests == []

    @pytest.mark.asyncio
    async def test_clinic_rate_above_full_gross_recorded_as_rejection(
        self, pipeline, processor, billing_data, monkeypatch
    ):
        async def misconfigured_clinic(db, clinic_id):
            return ClinicSettings(clinic_id=clinic_id, clinic_fee_rate_bps=12000, destination_account_id="acct_bad")

        monkeypatch.setattr(commission_pipeline, "get_clinic_settings", misconfigured_clinic)

        result = await pipeline.process_payment(_event(clinic_id="cl_bad"))
        record = result.record

        assert record.validation_status == ValidationStatus.REJECTED
        assert record.rejection_reason == RejectionReason.CLINIC_RATE_OUT_OF_RANGE.value
        assert record.clinic_rate_bps == 12000
        assert record.clinic_amount == 0
        assert record.platform_amount + record.expert_amount == 10000
        assert record.transfer_status == TransferStatus.NOT_ATTEMPTED
        assert processor.requests == []

    @pytest.mark.asyncio
    async def test_zero_gross_accepted_without_transfer(self, pipeline, processor, billing_data):
        result = await pipeline.process_payment(_event(gross_amount=0))
        record = result.record

        assert record.validation_status == ValidationStatus.ACCEPTED
        assert (record.platform_amount, record.expert_amount) == (0, 0)
        assert record.transfer_status == TransferStatus.NOT_ATTEMPTED
        assert processor.requests == []

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, pipeline, processor, session_factory, billing_data):
        first = await pipeline.process_payment(_event())
        second = await pipeline.process_payment(_event(gross_amount=99999))

        assert second.duplicate
        assert second.record.id == first.record.id
        assert second.record.gross_amount == 10000
        assert len(processor.requests) == 1
        assert await _count_records(session_factory) == 1

    @pytest.mark.asyncio
    async def test_role_overrides_stored_tier(self, pipeline, billing_data):
        result = await pipeline.process_payment(_event(expert_id="exp_comm", expert_role="expert_lecturer"))
        # top + commission plan
        assert result.record.platform_rate_bps == 1500
        assert result.record.tier_snapshot == Tier.TOP

    @pytest.mark.asyncio
    async def test_missing_expert_account_recorded_as_failed(self, pipeline, processor, billing_data):
        result = await pipeline.process_payment(_event(expert_id="exp_no_acct"))

        assert result.record.validation_status == ValidationStatus.ACCEPTED
        assert result.record.transfer_status == TransferStatus.FAILED
        assert "missing_destination" in result.record.transfer_failure_reason
        assert processor.requests == []

    @pytest.mark.asyncio
    async def test_transient_failures_recorded(self, pipeline, processor, billing_data):
        processor.errors = [TransientProcessorError("timeout", code="timeout")] * 3

        result = await pipeline.process_payment(_event())

        assert result.record.transfer_status == TransferStatus.FAILED
        assert result.record.transfer_attempts == 3
        assert len(processor.requests) == 3


# ── configuration errors ─────────────────────────────────


class TestConfigurationErrors:
    @pytest.mark.asyncio
    async def test_no_plan(self, pipeline, session_factory, billing_data):
        async with session_factory() as db:
            db.add(ExpertTier(expert_id="exp_new", tier=Tier.TOP, started_at=START))

        with pytest.raises(NoActivePlan):
            await pipeline.process_payment(_event(expert_id="exp_new"))
        assert await _count_records(session_factory) == 0

    @pytest.mark.asyncio
    async def test_no_tier(self, pipeline, session_factory, billing_data):
        with pytest.raises(NoActiveTier):
            await pipeline.process_payment(_event(expert_id="exp_unknown"))
        assert await _count_records(session_factory) == 0

    @pytest.mark.asyncio
    async def test_unknown_role(self, pipeline, billing_data):
        with pytest.raises(NoActiveTier):
            await pipeline.process_payment(_event(expert_role="patient"))

    @pytest.mark.asyncio
    async def test_unknown_clinic(self, pipeline, processor, billing_data):
        with pytest.raises(UnknownClinic):
            await pipeline.process_payment(_event(clinic_id="cl_missing"))
        assert processor.requests == []


# ── process_refund ───────────────────────────────────────


class TestProcessRefund:
    @pytest.mark.asyncio
    async def test_full_refund(self, pipeline, billing_data):
        original = (await pipeline.process_payment(_event(expert_id="exp_comm", clinic_id="cl_15"))).record

        result = await pipeline.process_refund(RefundEvent(refund_id="re_1", transaction_id="tx_1"))
        reversal = result.record

        assert reversal.kind == RecordKind.REVERSAL
        assert reversal.reverses_record_id == original.id
        assert reversal.gross_amount == 10000
        assert reversal.platform_amount == 2000
        assert reversal.clinic_amount == 1500
        assert reversal.expert_amount == 6500
        assert reversal.tier_snapshot == original.tier_snapshot
        assert reversal.transfer_status == TransferStatus.NOT_ATTEMPTED

    @pytest.mark.asyncio
    async def test_partial_refunds_up_to_gross(self, pipeline, billing_data):
        await pipeline.process_payment(_event())

        await pipeline.process_refund(RefundEvent(refund_id="re_1", transaction_id="tx_1", amount=6000))
        second = await pipeline.process_refund(RefundEvent(refund_id="re_2", transaction_id="tx_1"))
        assert second.record.gross_amount == 4000

        with pytest.raises(InvalidRefund):
            await pipeline.process_refund(RefundEvent(refund_id="re_3", transaction_id="tx_1", amount=1))

    @pytest.mark.asyncio
    async def test_partial_refunds_net_to_zero(self, pipeline, session_factory, billing_data):
        await pipeline.process_payment(_event(expert_id="exp_comm", gross_amount=7))

        first = await pipeline.process_refund(RefundEvent(refund_id="re_1", transaction_id="tx_1", amount=3))
        second = await pipeline.process_refund(RefundEvent(refund_id="re_2", transaction_id="tx_1", amount=4))

        assert (first.record.platform_amount, first.record.expert_amount) == (0, 3)
        assert (second.record.platform_amount, second.record.expert_amount) == (1, 3)

        async with session_factory() as db:
            totals = await calculate_total_commissions(db, "exp_comm")
        assert totals["total_platform_fees"] == 0
        assert totals["total_clinic_fees"] == 0
        assert totals["total_gross_revenue"] == 0
        assert totals["total_net_revenue"] == 0

    @pytest.mark.asyncio
    async def test_small_refunds_never_reverse_more_than_a_share(self, pipeline, session_factory, billing_data):
        await pipeline.process_payment(_event(expert_id="exp_comm", clinic_id="cl_15", gross_amount=10))

        reversals = []
        for n in range(10):
            result = await pipeline.process_refund(
                RefundEvent(refund_id=f"re_{n}", transaction_id="tx_1", amount=1)
            )
            reversals.append(result.record)

        assert sum(r.platform_amount for r in reversals) == 2
        assert sum(r.clinic_amount for r in reversals) == 1
        assert sum(r.expert_amount for r in reversals) == 7
        assert all(min(r.platform_amount, r.clinic_amount, r.expert_amount) >= 0 for r in reversals)

        async with session_factory() as db:
            totals = await calculate_total_commissions(db, "exp_comm")
        assert totals["total_net_revenue"] == 0
        assert totals["total_gross_revenue"] == 0

    def test_refund_locks_the_original_record(self):
        statement = commission_query("tx_1", for_update=True)
        assert "FOR UPDATE" in str(statement.compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE" not in str(commission_query("tx_1").compile(dialect=postgresql.dialect()))

    @pytest.mark.asyncio
    async def test_refund_exceeding_gross(self, pipeline, billing_data):
        await pipeline.process_payment(_event())

        with pytest.raises(InvalidRefund):
            await pipeline.process_refund(RefundEvent(refund_id="re_1", transaction_id="tx_1", amount=10001))

    @pytest.mark.asyncio
    async def test_duplicate_refund(self, pipeline, billing_data):
        await pipeline.process_payment(_event())

        first = await pipeline.process_refund(RefundEvent(refund_id="re_1", transaction_id="tx_1", amount=100))
        second = await pipeline.process_refund(RefundEvent(refund_id="re_1", transaction_id="tx_1", amount=100))

        assert second.duplicate
        assert second.record.id == first.record.id

    @pytest.mark.asyncio
    async def test_refund_of_unknown_transaction(self, pipeline, billing_data):
        with pytest.raises(InvalidRefund):
            await pipeline.process_refund(RefundEvent(refund_id="re_1", transaction_id="tx_missing"))

    @pytest.mark.asyncio
    async def test_refund_of_rejected_transaction(self, pipeline, billing_data):
        await pipeline.process_payment(_event(expert_id="exp_comm", clinic_id="cl_25"))

        with pytest.raises(InvalidRefund):
            await pipeline.process_refund(RefundEvent(refund_id="re_1", transaction_id="tx_1"))

    @pytest.mark.asyncio
    async def test_dispute_reason_is_audited(self, pipeline, session_factory, billing_data):
        await pipeline.process_payment(_event())
        result = await pipeline.process_refund(
            RefundEvent(refund_id="dp_1", transaction_id="tx_1", reason="dispute")
        )

        async with session_factory() as db:
            record = await db.get(CommissionRecord, result.record.id)
            audit_entry = await db.get(AuditLog, record.audit_log_id)
        assert audit_entry.action_metadata["note"] == "dispute"


# ── preview_split ────────────────────────────────────────


class TestPreviewSplit:
    def test_preview_with_clinic(self):
        entry, split, validation = preview_split(
            Tier.COMMUNITY, BillingPlan.COMMISSION, 10000, clinic_rate_bps=1500,
            as_of=PAID_AT, policy=SplitPolicy(), table=builtin_rate_table(),
        )
        assert entry.commission_rate_bps == 2000
        assert split.expert_amount == 6500
        assert validation.accepted

    def test_preview_rejection(self):
        _, _, validation = preview_split(
            Tier.COMMUNITY, BillingPlan.COMMISSION, 10000, clinic_rate_bps=2500,
            as_of=PAID_AT, policy=SplitPolicy(), table=builtin_rate_table(),
        )
        assert validation.reason == RejectionReason.AGGREGATE_FEE_EXCEEDS_MAXIMUM
