"""
Tests for billing inputs.

Covers:
- Active plan and tier resolution over versioned rows
- Plan changes close the old version and audit the change
- Role to tier mapping
- Clinic settings lookup and the stored rate range
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from src.models import (
    AuditAction,
    AuditLog,
    BillingPlan,
    ClinicSettings,
    ExpertTier,
    SubscriptionPlan,
    Tier,
)
from src.services.billing import (
    change_plan,
    get_active_plan,
    get_active_tier,
    get_clinic_settings,
    get_expert_account,
    tier_from_role,
)
from src.services.errors import NoActivePlan, NoActiveTier, UnknownClinic

JAN = datetime(2025, 1, 1, tzinfo=timezone.utc)
MAR = datetime(2025, 3, 1, tzinfo=timezone.utc)
JUN = datetime(2025, 6, 1, tzinfo=timezone.utc)


# ── get_active_plan ──────────────────────────────────────


class TestActivePlan:
    @pytest.mark.asyncio
    async def test_current_plan(self, db_session):
        db_session.add(SubscriptionPlan(billing_entity_id="exp_1", plan=BillingPlan.MONTHLY, started_at=JAN))
        await db_session.flush()

        plan = await get_active_plan(db_session, "exp_1", JUN)
        assert plan.plan == BillingPlan.MONTHLY

    @pytest.mark.asyncio
    async def test_historical_instant_uses_closed_version(self, db_session):
        db_session.add_all([
            SubscriptionPlan(billing_entity_id="exp_1", plan=BillingPlan.COMMISSION, started_at=JAN, ended_at=MAR),
            SubscriptionPlan(billing_entity_id="exp_1", plan=BillingPlan.ANNUAL, started_at=MAR),
        ])
        await db_session.flush()

        assert (await get_active_plan(db_session, "exp_1", JAN + timedelta(days=10))).plan == BillingPlan.COMMISSION
        assert (await get_active_plan(db_session, "exp_1", MAR)).plan == BillingPlan.ANNUAL

    @pytest.mark.asyncio
    async def test_no_plan(self, db_session):
        with pytest.raises(NoActivePlan):
            await get_active_plan(db_session, "nobody", JUN)

    @pytest.mark.asyncio
    async def test_before_first_plan(self, db_session):
        db_session.add(SubscriptionPlan(billing_entity_id="exp_1", plan=BillingPlan.MONTHLY, started_at=MAR))
        await db_session.flush()

        with pytest.raises(NoActivePlan):
            await get_active_plan(db_session, "exp_1", JAN)


# ── change_plan ──────────────────────────────────────────


class TestChangePlan:
    @pytest.mark.asyncio
    async def test_change_closes_previous_version(self, db_session):
        db_session.add(SubscriptionPlan(billing_entity_id="exp_1", plan=BillingPlan.COMMISSION, started_at=JAN))
        await db_session.flush()

        new_version = await change_plan(db_session, "exp_1", BillingPlan.ANNUAL, effective_at=MAR, actor="ops")

        result = await db_session.execute(
            select(SubscriptionPlan)
            .where(SubscriptionPlan.billing_entity_id == "exp_1")
            .order_by(SubscriptionPlan.started_at)
        )
        versions = list(result.scalars().all())
        assert len(versions) == 2
        assert versions[0].plan == BillingPlan.COMMISSION
        assert versions[0].ended_at is not None
        assert versions[1].id == new_version.id
        assert versions[1].ended_at is None

        # Transactions before the change still resolve to the old plan
        assert (await get_active_plan(db_session, "exp_1", JAN + timedelta(days=1))).plan == BillingPlan.COMMISSION
        assert (await get_active_plan(db_session, "exp_1", JUN)).plan == BillingPlan.ANNUAL

    @pytest.mark.asyncio
    async def test_change_is_audited(self, db_session):
        await change_plan(db_session, "exp_2", BillingPlan.MONTHLY, effective_at=MAR, actor="ops", ip_address="10.0.0.1")

        entry = (await db_session.execute(select(AuditLog))).scalar_one()
        assert entry.action == AuditAction.PLAN_CHANGED
        assert entry.actor == "ops"
        assert entry.target_id == "exp_2"
        assert entry.action_metadata["from"] is None
        assert entry.action_metadata["to"] == "monthly"
        assert entry.ip_address == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_change_must_start_after_current(self, db_session):
        db_session.add(SubscriptionPlan(billing_entity_id="exp_1", plan=BillingPlan.COMMISSION, started_at=MAR))
        await db_session.flush()

        with pytest.raises(ValueError):
            await change_plan(db_session, "exp_1", BillingPlan.ANNUAL, effective_at=JAN)


# ── tiers ────────────────────────────────────────────────


class TestTiers:
    def test_role_mapping(self):
        assert tier_from_role("expert_top") == Tier.TOP
        assert tier_from_role("expert_lecturer") == Tier.TOP
        assert tier_from_role("expert_community") == Tier.COMMUNITY

    def test_unknown_role(self):
        with pytest.raises(NoActiveTier):
            tier_from_role("patient", "exp_1")

    def test_missing_role(self):
        with pytest.raises(NoActiveTier):
            tier_from_role(None, "exp_1")

    @pytest.mark.asyncio
    async def test_active_tier(self, db_session):
        db_session.add_all([
            ExpertTier(expert_id="exp_1", tier=Tier.COMMUNITY, started_at=JAN, ended_at=MAR),
            ExpertTier(expert_id="exp_1", tier=Tier.TOP, started_at=MAR),
        ])
        await db_session.flush()

        assert (await get_active_tier(db_session, "exp_1", JAN)).tier == Tier.COMMUNITY
        assert (await get_active_tier(db_session, "exp_1", JUN)).tier == Tier.TOP

    @pytest.mark.asyncio
    async def test_no_tier(self, db_session):
        with pytest.raises(NoActiveTier):
            await get_active_tier(db_session, "exp_1", JUN)


# ── clinics and accounts ─────────────────────────────────


class TestClinicSettings:
    @pytest.mark.asyncio
    async def test_active_clinic(self, db_session):
        db_session.add(ClinicSettings(clinic_id="cl_1", clinic_fee_rate_bps=1500, destination_account_id="acct_cl"))
        await db_session.flush()

        clinic = await get_clinic_settings(db_session, "cl_1")
        assert clinic.clinic_fee_rate_bps == 1500

    @pytest.mark.asyncio
    async def test_inactive_clinic(self, db_session):
        db_session.add(ClinicSettings(
            clinic_id="cl_1", clinic_fee_rate_bps=1500, destination_account_id="acct_cl", is_active=False,
        ))
        await db_session.flush()

        with pytest.raises(UnknownClinic):
            await get_clinic_settings(db_session, "cl_1")

    @pytest.mark.asyncio
    async def test_unknown_clinic(self, db_session):
        with pytest.raises(UnknownClinic):
            await get_clinic_settings(db_session, "cl_missing")

    @pytest.mark.asyncio
    async def test_rate_above_full_gross_is_refused(self, db_session):
        db_session.add(ClinicSettings(clinic_id="cl_1", clinic_fee_rate_bps=12000, destination_account_id="acct_cl"))

        with pytest.raises(IntegrityError):
            await db_session.flush()

    @pytest.mark.asyncio
    async def test_missing_expert_account(self, db_session):
        assert await get_expert_account(db_session, "exp_1") is None
