"""Billing plan endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import require_api_key
from src.db import get_db
from src.schemas.billing import PlanChangeRequest, PlanResponse
from src.services.billing import change_plan
from src.utils.audit import get_client_ip

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.put("/{billing_entity_id}/plan", response_model=PlanResponse)
async def update_plan(
    billing_entity_id: str,
    request: Request,
    data: PlanChangeRequest,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(require_api_key),
):
    """Open a new plan version; the previous one is closed, not edited."""
    try:
        new_version = await change_plan(
            db,
            billing_entity_id,
            data.plan,
            effective_at=data.effective_at,
            actor=caller,
            ip_address=get_client_ip(request),
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))

    await db.commit()
    return PlanResponse.model_validate(new_version)
