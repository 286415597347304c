"""
Platform rate resolution.

Rule:
- Commission rate = f(expert tier, billing plan) at the transaction instant
- Experts inside a clinic keep their own tier and plan
- No fallback rate: a missing combination stops the pipeline
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from src.models.billing import BillingPlan, Tier
from src.services.errors import UnknownTierPlanCombination
from src.services.rate_table import RateTable, RateTableEntry, get_rate_table

logger = logging.getLogger(__name__)


def resolve_rate(
    tier: Tier,
    plan: BillingPlan,
    as_of: Optional[datetime] = None,
    table: Optional[RateTable] = None,
) -> RateTableEntry:
    """Resolve the platform rate for a transaction.

    Pure lookup: identical inputs always return the identical entry,
    which is what makes audit recomputation from a stored snapshot
    possible.

    Args:
        tier: Expert tier at the transaction instant
        plan: Billing plan active at the transaction instant
        as_of: Instant to resolve for (defaults to now)
        table: Rate table to use (defaults to the configured one)

    Returns:
        The matching RateTableEntry

    Raises:
        UnknownTierPlanCombination: no entry covers (tier, plan) at as_of
    """
    if as_of is None:
        as_of = datetime.now(timezone.utc)
    if table is None:
        table = get_rate_table()

    try:
        return table.lookup(Tier(tier), BillingPlan(plan), as_of)
    except UnknownTierPlanCombination:
        logger.error(
            f"Rate table {table.version} has no entry for tier={tier} plan={plan} "
            f"at {as_of.isoformat()}"
        )
        raise
