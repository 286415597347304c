"""Billing plan schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from src.models.billing import BillingPlan


class PlanChangeRequest(BaseModel):
    """Switch a billing entity to a new plan (versioned)."""

    plan: BillingPlan
    effective_at: Optional[datetime] = None


class PlanResponse(BaseModel):
    id: int
    billing_entity_id: str
    plan: BillingPlan
    started_at: datetime
    ended_at: Optional[datetime]

    model_config = {"from_attributes": True}
