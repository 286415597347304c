"""Commission record and split schemas."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from src.models.billing import BillingPlan, Tier
from src.models.commission import RecordKind, TransferStatus, ValidationStatus


class CommissionRecordResponse(BaseModel):
    """Full commission record, for ops and support."""

    id: int
    transaction_id: str
    kind: RecordKind
    reverses_record_id: Optional[int]

    payer_id: Optional[str]
    expert_id: str
    clinic_id: Optional[str]

    currency: str
    charge_reference: Optional[str]
    gross_amount: int
    platform_rate_bps: int
    platform_amount: int
    clinic_rate_bps: Optional[int]
    clinic_amount: Optional[int]
    expert_amount: int

    tier_snapshot: Optional[Tier]
    plan_snapshot: Optional[BillingPlan]
    recurring_fee_minor_units: Optional[int]
    rate_table_version: Optional[str]

    validation_status: ValidationStatus
    rejection_reason: Optional[str]
    rejection_detail: Optional[str]
    transfer_status: TransferStatus
    transfer_failure_reason: Optional[str]
    transfer_attempts: int
    processor_transfer_ids: Optional[Dict[str, str]]
    idempotency_key: Optional[str]
    audit_log_id: Optional[int]
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentProcessedResponse(BaseModel):
    """Webhook answer: the record plus whether it already existed."""

    duplicate: bool
    record: CommissionRecordResponse


class CommissionListResponse(BaseModel):
    items: List[CommissionRecordResponse]
    total: int
    page: int
    per_page: int
    pages: int


class CommissionSummaryResponse(BaseModel):
    """Totals for one expert, net of reversals (minor units)."""

    expert_id: str
    total_platform_fees: int
    total_clinic_fees: int
    total_gross_revenue: int
    total_net_revenue: int
    transaction_count: int


class SplitPreviewRequest(BaseModel):
    tier: Tier
    plan: BillingPlan
    gross_amount: int = Field(..., ge=0, strict=True)
    clinic_rate_bps: Optional[int] = Field(None, ge=0, le=10000, strict=True)
    as_of: Optional[datetime] = None


class SplitPreviewResponse(BaseModel):
    tier: Tier
    plan: BillingPlan
    rate_table_version: str
    recurring_fee_minor_units: int
    gross_amount: int
    platform_rate_bps: int
    platform_amount: int
    clinic_rate_bps: Optional[int]
    clinic_amount: int
    expert_amount: int
    accepted: bool
    rejection_reason: Optional[str] = None
    rejection_detail: Optional[str] = None
