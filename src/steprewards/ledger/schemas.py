"""Pydantic models for earnings endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class TransactionResponse(BaseModel):
    id: int
    amount: float
    type: str
    description: str
    tournament_id: int | None = None
    created_at: datetime


class EarningsHistoryResponse(BaseModel):
    transactions: list[TransactionResponse]


class BonusRequest(BaseModel):
    # Range, cap and reserved types are checked by the service.
    amount: float = Field(strict=True)
    type: str = Field(strict=True)
    description: str | None = None


class BonusResponse(BaseModel):
    success: bool
    amount: float
