"""Pydantic models for cashout endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CashoutRequest(BaseModel):
    # The minimum and the email format are checked by the service.
    amount: float = Field(strict=True)
    paypal_email: str = Field(strict=True)


class CashoutStatusRequest(BaseModel):
    status: str = Field(strict=True)
    reason: str | None = None


class CashoutResponse(BaseModel):
    id: int
    user_id: str
    amount: float
    paypal_email: str
    status: str
    rejection_reason: str | None = None
    processed_at: datetime | None = None
    processed_by: str | None = None
    created_at: datetime


class CashoutStatusResponse(BaseModel):
    success: bool
    cashout: CashoutResponse
