"""Rate table configuration file schema."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from src.models.billing import BillingPlan, Tier


class RateTableEntryConfig(BaseModel):
    """One (tier, plan) row with its effective window."""

    tier: Tier
    plan: BillingPlan
    commission_rate_bps: int = Field(..., ge=0, le=10000)
    recurring_fee_minor_units: int = Field(0, ge=0)
    effective_from: datetime
    effective_to: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_window(self) -> "RateTableEntryConfig":
        if self.effective_to is not None and self.effective_to <= self.effective_from:
            raise ValueError("effective_to must be after effective_from")
        return self


class RateTableConfig(BaseModel):
    """Whole versioned rate table."""

    version: str = Field(..., min_length=1, max_length=50)
    entries: List[RateTableEntryConfig] = Field(..., min_length=1)
