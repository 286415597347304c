"""Pydantic schemas for request/response validation."""

from src.schemas.billing import PlanChangeRequest, PlanResponse
from src.schemas.commission import (
    CommissionListResponse,
    CommissionRecordResponse,
    CommissionSummaryResponse,
    PaymentProcessedResponse,
    SplitPreviewRequest,
    SplitPreviewResponse,
)
from src.schemas.payment import PaymentConfirmedEvent, RefundEvent
from src.schemas.rate_table import RateTableConfig, RateTableEntryConfig

__all__ = [
    # Billing
    "PlanChangeRequest",
    "PlanResponse",
    # Commission
    "CommissionListResponse",
    "CommissionRecordResponse",
    "CommissionSummaryResponse",
    "PaymentProcessedResponse",
    "SplitPreviewRequest",
    "SplitPreviewResponse",
    # Payment events
    "PaymentConfirmedEvent",
    "RefundEvent",
    # Rate table
    "RateTableConfig",
    "RateTableEntryConfig",
]
