"""
Billing inputs for rate resolution: active plan, active tier,
payout destinations and clinic settings.

Plan changes are versioned. The current version is closed with an
end timestamp and a new version opened; the plan value of an existing
row is never edited.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models import (
    AuditAction,
    BillingPlan,
    ClinicSettings,
    ExpertAccount,
    ExpertTier,
    SubscriptionPlan,
    Tier,
)
from src.services.errors import NoActivePlan, NoActiveTier, UnknownClinic
from src.utils.audit import log_action
from src.utils.dates import as_utc

logger = logging.getLogger(__name__)

# External role -> tier. Lecturers are billed as top experts.
ROLE_TIERS = {
    "expert_top": Tier.TOP,
    "expert_lecturer": Tier.TOP,
    "expert_community": Tier.COMMUNITY,
}


def tier_from_role(role: Optional[str], expert_id: str = "unknown") -> Tier:
    """Map an external expert role to its tier."""
    tier = ROLE_TIERS.get(role or "")
    if tier is None:
        raise NoActiveTier(expert_id, f"role {role!r} has no tier")
    return tier


async def get_active_plan(
    db: AsyncSession,
    billing_entity_id: str,
    as_of: datetime,
) -> SubscriptionPlan:
    """
    Get the plan version active for a billing entity at ``as_of``.

    Raises:
        NoActivePlan: no version covers the instant
    """
    as_of = as_utc(as_of)
    result = await db.execute(
        select(SubscriptionPlan)
        .where(
            SubscriptionPlan.billing_entity_id == billing_entity_id,
            SubscriptionPlan.started_at <= as_of,
            or_(
                SubscriptionPlan.ended_at.is_(None),
                SubscriptionPlan.ended_at > as_of,
            ),
        )
        .order_by(SubscriptionPlan.started_at.desc())
        .limit(1)
    )
    plan = result.scalar_one_or_none()
    if plan is None:
        logger.error(f"No active plan for billing entity {billing_entity_id} at {as_of.isoformat()}")
        raise NoActivePlan(billing_entity_id, as_of)
    return plan


async def get_active_tier(
    db: AsyncSession,
    expert_id: str,
    as_of: datetime,
) -> ExpertTier:
    """Get the tier version active for an expert at ``as_of``."""
    as_of = as_utc(as_of)
    result = await db.execute(
        select(ExpertTier)
        .where(
            ExpertTier.expert_id == expert_id,
            ExpertTier.started_at <= as_of,
            or_(
                ExpertTier.ended_at.is_(None),
                ExpertTier.ended_at > as_of,
            ),
        )
        .order_by(ExpertTier.started_at.desc())
        .limit(1)
    )
    tier = result.scalar_one_or_none()
    if tier is None:
        logger.error(f"No active tier for expert {expert_id} at {as_of.isoformat()}")
        raise NoActiveTier(expert_id)
    return tier


async def change_plan(
    db: AsyncSession,
    billing_entity_id: str,
    new_plan: BillingPlan,
    effective_at: Optional[datetime] = None,
    actor: str = "system",
    ip_address: Optional[str] = None,
) -> SubscriptionPlan:
    """Close the current plan version and open a new one.

    Args:
        db: Database session
        billing_entity_id: Expert or organization being billed
        new_plan: Plan to switch to
        effective_at: When the new plan starts (defaults to now)
        actor: Who requested the change, for the audit log
        ip_address: Client IP, for the audit log

    Returns:
        The newly opened SubscriptionPlan version
    """
    effective_at = as_utc(effective_at or datetime.now(timezone.utc))

    result = await db.execute(
        select(SubscriptionPlan).where(
            SubscriptionPlan.billing_entity_id == billing_entity_id,
            SubscriptionPlan.ended_at.is_(None),
        )
    )
    previous = None
    for current in result.scalars().all():
        if as_utc(current.started_at) >= effective_at:
            raise ValueError(
                f"Plan change for {billing_entity_id} must start after {current.started_at}"
            )
        current.ended_at = effective_at
        previous = current

    new_version = SubscriptionPlan(
        billing_entity_id=billing_entity_id,
        plan=new_plan,
        started_at=effective_at,
    )
    db.add(new_version)

    await log_action(
        db=db,
        actor=actor,
        action=AuditAction.PLAN_CHANGED,
        target_type="billing_entity",
        target_id=billing_entity_id,
        action_metadata={
            "from": previous.plan.value if previous else None,
            "to": new_plan.value,
            "effective_at": effective_at.isoformat(),
        },
        ip_address=ip_address,
    )
    await db.flush()

    logger.info(
        f"Billing entity {billing_entity_id} plan changed "
        f"{previous.plan.value if previous else 'none'} -> {new_plan.value} at {effective_at.isoformat()}"
    )
    return new_version


async def get_expert_account(db: AsyncSession, expert_id: str) -> Optional[ExpertAccount]:
    return await db.get(ExpertAccount, expert_id)


async def get_clinic_settings(db: AsyncSession, clinic_id: str) -> ClinicSettings:
    """
    Get active settings for a clinic.

    Raises:
        UnknownClinic: clinic has no settings or is inactive
    """
    clinic = await db.get(ClinicSettings, clinic_id)
    if clinic is None or not clinic.is_active:
        logger.error(f"Clinic {clinic_id} has no active settings")
        raise UnknownClinic(clinic_id)
    return clinic
