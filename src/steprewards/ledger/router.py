"""Earnings API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.auth.dependencies import get_current_uid
from steprewards.dependencies import get_db, get_redis_dep
from steprewards.ledger.schemas import (
    BonusRequest,
    BonusResponse,
    EarningsHistoryResponse,
    TransactionResponse,
)
from steprewards.ledger.service import add_bonus, get_earnings_history

router = APIRouter(prefix="/api/v1/earnings", tags=["Earnings"])


@router.get("/history", response_model=EarningsHistoryResponse)
async def earnings_history(
    uid: str = Depends(get_current_uid),
    db: AsyncSession = Depends(get_db),
) -> EarningsHistoryResponse:
    """Newest transactions for the caller."""
    rows = await get_earnings_history(db, uid)
    return EarningsHistoryResponse(
        transactions=[
            TransactionResponse(
                id=tx.id,
                amount=float(tx.amount),
                type=tx.type,
                description=tx.description,
                tournament_id=tx.tournament_id,
                created_at=tx.created_at,
            )
            for tx in rows
        ],
    )


@router.post("/bonus", response_model=BonusResponse)
async def bonus(
    body: BonusRequest,
    uid: str = Depends(get_current_uid),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
) -> BonusResponse:
    """Credit an ad or promotion bonus, capped per call."""
    credited = await add_bonus(db, redis, uid, body.amount, body.type, body.description)
    return BonusResponse(success=True, amount=float(credited))
