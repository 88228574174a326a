"""Pydantic models for tournament endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CreateTournamentRequest(BaseModel):
    # Ordering of dates and prize ranks are checked by the service.
    name: str = Field(strict=True)
    description: str | None = None
    start_date: datetime
    end_date: datetime
    prize_pool: float = Field(strict=True)
    prizes: dict[str, float] | None = None
    is_active: bool | None = None
    is_premium_only: bool | None = None


class CreateTournamentResponse(BaseModel):
    success: bool
    tournament_id: int


class JoinTournamentResponse(BaseModel):
    success: bool
    message: str
