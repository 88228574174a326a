"""Step API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.auth.dependencies import get_current_uid
from steprewards.dependencies import get_db, get_redis_dep
from steprewards.steps.schemas import (
    BestDay,
    DailySteps,
    StepStats,
    StepStatsResponse,
    SyncStepsRequest,
    SyncStepsResponse,
)
from steprewards.steps.service import get_step_stats, sync_steps

router = APIRouter(prefix="/api/v1/steps", tags=["Steps"])


@router.get("/stats", response_model=StepStatsResponse)
async def step_stats(
    uid: str = Depends(get_current_uid),
    db: AsyncSession = Depends(get_db),
) -> StepStatsResponse:
    """Last 30 days of step records with totals."""
    data = await get_step_stats(db, uid)
    stats = data["stats"]
    return StepStatsResponse(
        daily_data=[
            DailySteps(id=d["id"], date=d["date"], step_count=d["step_count"], earnings=float(d["earnings"]))
            for d in data["daily_data"]
        ],
        stats=StepStats(
            total_steps=stats["total_steps"],
            total_earnings=float(stats["total_earnings"]),
            avg_steps=float(stats["avg_steps"]),
            best_day=BestDay(**stats["best_day"]),
        ),
    )


@router.post("/sync", response_model=SyncStepsResponse)
async def sync(
    body: SyncStepsRequest,
    uid: str = Depends(get_current_uid),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
) -> SyncStepsResponse:
    """Report today's step count; validation happens asynchronously."""
    record = await sync_steps(db, redis, uid, body.step_count)
    return SyncStepsResponse(
        date=record.date,
        step_count=record.step_count,
        earnings=float(record.earnings),
        multiplier=float(record.multiplier),
        is_validated=record.is_validated,
    )
