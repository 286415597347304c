"""
Seed billing data for local split testing.

Usage:
    DATABASE_URL="postgresql://..." python scripts/seed_billing_data.py

This script creates:
- A community expert on the commission plan
- A top expert on the annual plan
- A clinic with a 15% marketing fee
- Connected payout accounts for all of them
"""

import asyncio
import os
import sys
from datetime import datetime, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings
from src.models import (
    BillingPlan,
    ClinicSettings,
    ExpertAccount,
    ExpertTier,
    SubscriptionPlan,
    Tier,
)

SEED_START = datetime(2025, 1, 1, tzinfo=timezone.utc)

TEST_EXPERTS = [
    {"expert_id": "expert_community_1", "tier": Tier.COMMUNITY, "plan": BillingPlan.COMMISSION, "account": "acct_test_community"},
    {"expert_id": "expert_top_1", "tier": Tier.TOP, "plan": BillingPlan.ANNUAL, "account": "acct_test_top"},
]

TEST_CLINIC = {"clinic_id": "clinic_1", "rate_bps": 1500, "account": "acct_test_clinic"}


async def seed_expert(db: AsyncSession, expert: dict) -> None:
    expert_id = expert["expert_id"]

    if await db.get(ExpertAccount, expert_id):
        print(f"Expert {expert_id} already exists, skipping")
        return

    db.add(ExpertAccount(expert_id=expert_id, destination_account_id=expert["account"]))
    db.add(ExpertTier(expert_id=expert_id, tier=expert["tier"], started_at=SEED_START))

    result = await db.execute(
        select(SubscriptionPlan).where(
            SubscriptionPlan.billing_entity_id == expert_id,
            SubscriptionPlan.ended_at.is_(None),
        )
    )
    if result.scalar_one_or_none() is None:
        db.add(SubscriptionPlan(billing_entity_id=expert_id, plan=expert["plan"], started_at=SEED_START))

    await db.commit()
    print(f"Created expert {expert_id}: {expert['tier'].value} / {expert['plan'].value}")


async def seed_clinic(db: AsyncSession) -> None:
    if await db.get(ClinicSettings, TEST_CLINIC["clinic_id"]):
        print(f"Clinic {TEST_CLINIC['clinic_id']} already exists, skipping")
        return

    db.add(
        ClinicSettings(
            clinic_id=TEST_CLINIC["clinic_id"],
            clinic_fee_rate_bps=TEST_CLINIC["rate_bps"],
            destination_account_id=TEST_CLINIC["account"],
            is_active=True,
        )
    )
    await db.commit()
    print(f"Created clinic {TEST_CLINIC['clinic_id']} ({TEST_CLINIC['rate_bps']} bps)")


async def seed_all() -> None:
    """Seed all test data."""
    print("\nConnecting to database...")

    engine = create_async_engine(settings.database_url, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as db:
        print("\n=== Creating billing data ===\n")
        for expert in TEST_EXPERTS:
            await seed_expert(db, expert)
        await seed_clinic(db)

    await engine.dispose()
    print("\nBilling data ready.")


if __name__ == "__main__":
    asyncio.run(seed_all())
