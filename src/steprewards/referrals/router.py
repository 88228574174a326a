"""Referral API endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.auth.dependencies import get_current_uid
from steprewards.dependencies import get_db
from steprewards.referrals.service import get_referred_users
from steprewards.users.service import require_user

router = APIRouter(prefix="/api/v1/referrals", tags=["Referrals"])


class ReferredUserResponse(BaseModel):
    user_id: str
    status: str
    created_at: datetime
    completed_at: datetime | None = None


class ReferralsResponse(BaseModel):
    referral_code: str
    referred_by: str | None = None
    referred_users: list[ReferredUserResponse]


@router.get("", response_model=ReferralsResponse)
async def referrals(
    uid: str = Depends(get_current_uid),
    db: AsyncSession = Depends(get_db),
) -> ReferralsResponse:
    """The caller's referral code and the users who signed up with it."""
    user = await require_user(db, uid)
    rows = await get_referred_users(db, uid)
    return ReferralsResponse(
        referral_code=user.referral_code,
        referred_by=user.referred_by,
        referred_users=[
            ReferredUserResponse(
                user_id=r.referee_id,
                status=r.status,
                created_at=r.created_at,
                completed_at=r.completed_at,
            )
            for r in rows
        ],
    )
