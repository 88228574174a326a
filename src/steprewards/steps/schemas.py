"""Pydantic models for step endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

# DailySteps has a field named ``date``.
DayKey = date


class DailySteps(BaseModel):
    id: int
    date: DayKey
    step_count: int
    earnings: float


class BestDay(BaseModel):
    date: DayKey | None = None
    steps: int = 0


class StepStats(BaseModel):
    total_steps: int
    total_earnings: float
    avg_steps: float
    best_day: BestDay


class StepStatsResponse(BaseModel):
    daily_data: list[DailySteps]
    stats: StepStats


class SyncStepsRequest(BaseModel):
    # Negative counts are rejected by the service.
    step_count: int = Field(strict=True)


class SyncStepsResponse(BaseModel):
    date: DayKey
    step_count: int
    earnings: float
    multiplier: float
    is_validated: bool
