"""Quick database check script."""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from src.config import settings

TABLES = (
    "subscription_plans",
    "expert_tiers",
    "expert_accounts",
    "clinic_settings",
    "audit_logs",
    "commission_records",
)


async def check():
    print("Connecting to database...")

    engine = create_async_engine(settings.database_url, echo=False)

    async with engine.connect() as conn:
        print(f"\nTables checked: {len(TABLES)}")
        for t in TABLES:
            count_result = await conn.execute(text(f"SELECT COUNT(*) FROM {t}"))
            count = count_result.scalar()
            print(f"  - {t}: {count} rows")

        # Records whose money never reached the expert
        result = await conn.execute(text(
            "SELECT COUNT(*) FROM commission_records WHERE transfer_status = 'failed'"
        ))
        print(f"\nFailed transfers awaiting follow-up: {result.scalar()}")

    await engine.dispose()
    print("\nDatabase connection OK!")


if __name__ == "__main__":
    asyncio.run(check())
