"""Document change events exchanged over Redis streams.

A change carries the before/after images of one document, the same shape
for every stream. Payload models validate the images at the boundary so
workflows never see loosely-typed dicts.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# --- Stream names ---
USERS_CREATED = "auth:users:created"
USERS_UPDATED = "store:users:updated"
STEPS_WRITTEN = "store:steps:written"
CASHOUTS_CREATED = "store:cashouts:created"

STREAMS = [USERS_CREATED, USERS_UPDATED, STEPS_WRITTEN, CASHOUTS_CREATED]

# StepSnapshot has a field named ``date``.
DayKey = date


@dataclass(frozen=True)
class DocumentChange:
    """A single document write: ``before`` is None on create."""

    doc_id: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None

    def to_message(self) -> dict[str, str]:
        """Encode as a Redis stream entry."""
        return {
            "data": json.dumps(
                {"doc_id": self.doc_id, "before": self.before, "after": self.after},
                default=str,
            ),
        }

    @classmethod
    def from_message(cls, data: dict[str, Any]) -> DocumentChange:
        """Decode a parsed stream entry."""
        return cls(
            doc_id=str(data["doc_id"]),
            before=data.get("before"),
            after=data.get("after"),
        )


# --- Payload models ---


class StepSnapshot(BaseModel):
    user_id: str
    date: DayKey
    step_count: int = 0
    earnings: Decimal = Decimal("0.00")
    multiplier: Decimal = Decimal("1.00")
    is_validated: bool = False


class UserLedgerSnapshot(BaseModel):
    total_earnings: Decimal = Decimal("0.00")
    available_balance: Decimal = Decimal("0.00")
    pending_cashout: Decimal = Decimal("0.00")
    referred_by: str | None = None
    display_name: str = ""


class IdentityCreated(BaseModel):
    """Identity provider signup event."""

    uid: str
    email: str = ""
    display_name: str = ""
    photo_url: str = ""
    referral_code: str | None = None


async def publish_change(redis: object, stream: str, change: DocumentChange, maxlen: int = 100_000) -> bool:
    """Append a change to its stream. Failures are logged and reported as False."""
    if redis is None:
        return False
    try:
        await redis.xadd(  # type: ignore[attr-defined]
            stream, change.to_message(), maxlen=maxlen, approximate=True,
        )
    except Exception:
        logger.warning("Failed to publish %s change for %s", stream, change.doc_id, exc_info=True)
        return False
    return True
