"""
Payment event endpoints.

Signature verification happens in the upstream webhook collaborator,
which forwards verified payloads here.
"""

from functools import lru_cache

from fastapi import APIRouter, Depends

from src.auth.dependencies import require_api_key
from src.schemas.commission import CommissionRecordResponse, PaymentProcessedResponse
from src.schemas.payment import PaymentConfirmedEvent, RefundEvent
from src.services.commission_pipeline import CommissionPipeline, PipelineResult

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@lru_cache
def get_pipeline() -> CommissionPipeline:
    """Shared pipeline instance (overridden in tests)."""
    return CommissionPipeline()


def _response(result: PipelineResult) -> PaymentProcessedResponse:
    return PaymentProcessedResponse(
        duplicate=result.duplicate,
        record=CommissionRecordResponse.model_validate(result.record),
    )


@router.post("/payment-confirmed", response_model=PaymentProcessedResponse)
async def payment_confirmed(
    event: PaymentConfirmedEvent,
    pipeline: CommissionPipeline = Depends(get_pipeline),
    caller: str = Depends(require_api_key),
):
    """
    Split a confirmed payment.

    Always answers with the commission record, including rejected
    splits and failed transfers. Redelivery returns the first record.
    """
    result = await pipeline.process_payment(event)
    return _response(result)


@router.post("/refund", response_model=PaymentProcessedResponse)
async def refund(
    event: RefundEvent,
    pipeline: CommissionPipeline = Depends(get_pipeline),
    caller: str = Depends(require_api_key),
):
    """Record a compensating reversal for a refund or dispute."""
    result = await pipeline.process_refund(event)
    return _response(result)
