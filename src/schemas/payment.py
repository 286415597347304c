"""Inbound payment event schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from src.config import settings


class PaymentConfirmedEvent(BaseModel):
    """
    Payment-confirmed event from the payment collaborator.

    Authenticity is verified upstream; only shape and ranges are
    checked here. Amounts are integer minor units.
    """

    transaction_id: str = Field(..., min_length=1, max_length=255)
    gross_amount: int = Field(..., ge=0, strict=True)
    currency: str = Field(default_factory=lambda: settings.default_currency, pattern="^[A-Za-z]{3}$")
    payer_id: str = Field(..., min_length=1, max_length=255)
    expert_id: str = Field(..., min_length=1, max_length=255)
    clinic_id: Optional[str] = Field(None, min_length=1, max_length=255)
    charge_reference: Optional[str] = Field(None, max_length=255)
    expert_role: Optional[str] = Field(None, max_length=50)
    occurred_at: Optional[datetime] = None

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, v: str) -> str:
        return v.lower()


class RefundEvent(BaseModel):
    """Refund or dispute against an already recorded transaction."""

    refund_id: str = Field(..., min_length=1, max_length=255)
    transaction_id: str = Field(..., min_length=1, max_length=255)
    amount: Optional[int] = Field(
        None,
        gt=0,
        strict=True,
        description="Refunded minor units; full remaining amount when omitted",
    )
    reason: str = Field(default="refund", pattern="^(refund|dispute)$")
