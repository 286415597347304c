"""
Versioned platform rate table.

Maps (tier, billing plan) to the platform commission rate and the
plan's recurring fee. Each entry carries an effective window so a
historical instant resolves to the rate that applied then.

Built-in rates (basis points / recurring fee in cents):

    community: commission 2000 / 0, monthly 1200 / 4900, annual 1200 / 49000
    top:       commission 1500 / 0, monthly  800 / 17700, annual  800 / 177400

Top-tier fees are the corrected v2 prices (EUR 177 / EUR 1,774), not
the EUR 155 / EUR 1,490 figures of the first price list.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional, Tuple

from pydantic import ValidationError

from src.config import settings
from src.models.billing import BillingPlan, Tier
from src.schemas.rate_table import RateTableConfig
from src.services.errors import InvalidRateTable, UnknownTierPlanCombination
from src.utils.dates import as_utc

logger = logging.getLogger(__name__)

BUILTIN_VERSION = "2025-01"
BUILTIN_EFFECTIVE_FROM = datetime(2025, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class RateTableEntry:
    """Immutable rate for one (tier, plan) pair within a time window."""

    tier: Tier
    plan: BillingPlan
    commission_rate_bps: int
    recurring_fee_minor_units: int
    effective_from: datetime
    effective_to: Optional[datetime] = None
    version: str = BUILTIN_VERSION

    def is_active_at(self, as_of: datetime) -> bool:
        if as_of < self.effective_from:
            return False
        return self.effective_to is None or as_of < self.effective_to


class RateTable:
    """Lookup structure over rate table entries."""

    def __init__(self, version: str, entries: Iterable[RateTableEntry]):
        self.version = version
        self.entries: Tuple[RateTableEntry, ...] = tuple(entries)
        self._check_overlaps()

    def _check_overlaps(self) -> None:
        by_pair = {}
        for entry in self.entries:
            by_pair.setdefault((entry.tier, entry.plan), []).append(entry)

        for (tier, plan), group in by_pair.items():
            group.sort(key=lambda e: e.effective_from)
            for earlier, later in zip(group, group[1:]):
                if earlier.effective_to is None or earlier.effective_to > later.effective_from:
                    raise InvalidRateTable(
                        f"Overlapping rate windows for tier={tier.value} plan={plan.value}"
                    )

    def lookup(self, tier: Tier, plan: BillingPlan, as_of: datetime) -> RateTableEntry:
        """Return the entry for ``(tier, plan)`` active at ``as_of``."""
        as_of = as_utc(as_of)
        for entry in self.entries:
            if entry.tier == tier and entry.plan == plan and entry.is_active_at(as_of):
                return entry
        raise UnknownTierPlanCombination(tier.value, plan.value, as_of)

    def __len__(self) -> int:
        return len(self.entries)


def _builtin_entries():
    rates = {
        (Tier.COMMUNITY, BillingPlan.COMMISSION): (2000, 0),
        (Tier.COMMUNITY, BillingPlan.MONTHLY): (1200, 4900),
        (Tier.COMMUNITY, BillingPlan.ANNUAL): (1200, 49000),
        (Tier.TOP, BillingPlan.COMMISSION): (1500, 0),
        (Tier.TOP, BillingPlan.MONTHLY): (800, 17700),
        (Tier.TOP, BillingPlan.ANNUAL): (800, 177400),
    }
    for (tier, plan), (rate_bps, fee) in rates.items():
        yield RateTableEntry(
            tier=tier,
            plan=plan,
            commission_rate_bps=rate_bps,
            recurring_fee_minor_units=fee,
            effective_from=BUILTIN_EFFECTIVE_FROM,
        )


def builtin_rate_table() -> RateTable:
    """Rate table shipped with the service."""
    return RateTable(BUILTIN_VERSION, _builtin_entries())


def rate_table_from_config(config: RateTableConfig) -> RateTable:
    entries = [
        RateTableEntry(
            tier=row.tier,
            plan=row.plan,
            commission_rate_bps=row.commission_rate_bps,
            recurring_fee_minor_units=row.recurring_fee_minor_units,
            effective_from=as_utc(row.effective_from),
            effective_to=as_utc(row.effective_to) if row.effective_to else None,
            version=config.version,
        )
        for row in config.entries
    ]
    return RateTable(config.version, entries)


def load_rate_table(path: str) -> RateTable:
    """
    Load and validate a rate table JSON file.

    Raises:
        InvalidRateTable: file missing, not JSON, or failing validation
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        config = RateTableConfig.model_validate(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Failed to load rate table from {path}: {e}")
        raise InvalidRateTable(f"Cannot load rate table {path}: {e}") from e

    table = rate_table_from_config(config)
    logger.info(f"Loaded rate table version {table.version} ({len(table)} entries) from {path}")
    return table


@lru_cache
def get_rate_table() -> RateTable:
    """Configured rate table (file from settings, else built-in)."""
    if settings.rate_table_path:
        return load_rate_table(settings.rate_table_path)
    return builtin_rate_table()
