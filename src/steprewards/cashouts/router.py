"""Cashout API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.auth.dependencies import get_current_uid
from steprewards.cashouts.schemas import (
    CashoutRequest,
    CashoutResponse,
    CashoutStatusRequest,
    CashoutStatusResponse,
)
from steprewards.cashouts.service import request_cashout, update_cashout_status
from steprewards.db.models import Cashout
from steprewards.dependencies import get_db, get_notifier, get_redis_dep
from steprewards.notifications.service import EmailService

router = APIRouter(prefix="/api/v1/cashouts", tags=["Cashouts"])


def _to_response(cashout: Cashout) -> CashoutResponse:
    return CashoutResponse(
        id=cashout.id,
        user_id=cashout.user_id,
        amount=float(cashout.amount),
        paypal_email=cashout.paypal_email,
        status=cashout.status,
        rejection_reason=cashout.rejection_reason,
        processed_at=cashout.processed_at,
        processed_by=cashout.processed_by,
        created_at=cashout.created_at,
    )


@router.post("", response_model=CashoutResponse, status_code=201)
async def create(
    body: CashoutRequest,
    uid: str = Depends(get_current_uid),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
) -> CashoutResponse:
    """Reserve balance and file a cashout for review."""
    cashout = await request_cashout(db, redis, uid, body.amount, body.paypal_email)
    return _to_response(cashout)


@router.post("/{cashout_id}/status", response_model=CashoutStatusResponse)
async def update_status(
    cashout_id: int,
    body: CashoutStatusRequest,
    uid: str = Depends(get_current_uid),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
    notifier: EmailService = Depends(get_notifier),
) -> CashoutStatusResponse:
    """Approve, reject or complete a cashout (admin only)."""
    cashout = await update_cashout_status(db, redis, notifier, uid, cashout_id, body.status, body.reason)
    return CashoutStatusResponse(success=True, cashout=_to_response(cashout))
