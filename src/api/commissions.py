"""Commission record endpoints for ops and support."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import require_api_key
from src.db import get_db
from src.models import TransferStatus, ValidationStatus
from src.schemas.commission import (
    CommissionListResponse,
    CommissionRecordResponse,
    CommissionSummaryResponse,
    SplitPreviewRequest,
    SplitPreviewResponse,
)
from src.services.commission import (
    calculate_total_commissions,
    get_commission,
    list_commission_records,
)
from src.services.commission_pipeline import preview_split

router = APIRouter(prefix="/commissions", tags=["Commissions"])


@router.get("", response_model=CommissionListResponse)
async def list_commissions(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(require_api_key),
    expert_id: Optional[str] = Query(None),
    clinic_id: Optional[str] = Query(None),
    validation_status: Optional[ValidationStatus] = Query(None),
    transfer_status: Optional[TransferStatus] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """List commission records, newest first."""
    items, total = await list_commission_records(
        db,
        expert_id=expert_id,
        clinic_id=clinic_id,
        validation_status=validation_status,
        transfer_status=transfer_status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page,
    )
    return CommissionListResponse(
        items=[CommissionRecordResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        per_page=per_page,
        pages=(total + per_page - 1) // per_page if total else 0,
    )


@router.post("/preview", response_model=SplitPreviewResponse)
async def preview(
    data: SplitPreviewRequest,
    caller: str = Depends(require_api_key),
):
    """Compute and validate a split without recording or moving money."""
    entry, split, validation = preview_split(
        data.tier,
        data.plan,
        data.gross_amount,
        clinic_rate_bps=data.clinic_rate_bps,
        as_of=data.as_of,
    )
    return SplitPreviewResponse(
        tier=entry.tier,
        plan=entry.plan,
        rate_table_version=entry.version,
        recurring_fee_minor_units=entry.recurring_fee_minor_units,
        gross_amount=split.gross_amount,
        platform_rate_bps=split.platform_rate_bps,
        platform_amount=split.platform_amount,
        clinic_rate_bps=split.clinic_rate_bps,
        clinic_amount=split.clinic_amount,
        expert_amount=split.expert_amount,
        accepted=validation.accepted,
        rejection_reason=validation.reason.value if validation.reason else None,
        rejection_detail=validation.detail,
    )


@router.get("/experts/{expert_id}/summary", response_model=CommissionSummaryResponse)
async def expert_summary(
    expert_id: str,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(require_api_key),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
):
    """Fee and revenue totals for one expert."""
    totals = await calculate_total_commissions(db, expert_id, start_date, end_date)
    return CommissionSummaryResponse(**totals)


@router.get("/{transaction_id}", response_model=CommissionRecordResponse)
async def get_commission_record(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(require_api_key),
):
    """Get the record for one transaction (or refund) id."""
    record = await get_commission(db, transaction_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Commission record not found")
    return CommissionRecordResponse.model_validate(record)
