"""Step recording and validation.

Validation is the only path from a step count to money: it caps the count,
computes earnings, claims the record (``is_validated`` is terminal) and
credits the difference to the ledger in one batch.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.clock import reference_today
from steprewards.config import get_settings
from steprewards.db.models import ZERO, StepRecord, User
from steprewards.db.types import utcnow
from steprewards.errors import FailedPrecondition, InvalidArgument
from steprewards.ledger.service import CENT, BalanceLedger, TransactionType
from steprewards.steps.streak_service import streak_multiplier
from steprewards.tournaments.service import record_tournament_progress
from steprewards.triggers.events import STEPS_WRITTEN, DocumentChange, StepSnapshot
from steprewards.triggers.outbox import flush_staged, stage_change
from steprewards.users.service import get_user, require_user

logger = logging.getLogger(__name__)


def compute_earnings(step_count: int, multiplier: Decimal, is_premium: bool) -> tuple[int, Decimal]:
    """Apply the daily step cap and earnings cap.

    Returns (capped_steps, earnings) with earnings rounded half-up to cents.
    """
    settings = get_settings()
    if is_premium:
        max_steps, max_earnings = settings.max_daily_steps_premium, settings.max_daily_earnings_premium
    else:
        max_steps, max_earnings = settings.max_daily_steps_free, settings.max_daily_earnings_free
    capped = min(step_count, max_steps)
    raw = Decimal(capped) / Decimal(settings.steps_per_dollar) * Decimal(str(multiplier))
    earnings = min(raw, max_earnings).quantize(CENT, rounding=ROUND_HALF_UP)
    return capped, earnings


async def validate_steps(
    db: AsyncSession,
    redis: object,
    change: DocumentChange,
    now: datetime | None = None,
) -> bool:
    """Validate a step record write and credit its earnings.

    Returns True when this delivery claimed the record.
    """
    if change.after is None:
        return False
    after = StepSnapshot.model_validate(change.after)
    before = StepSnapshot.model_validate(change.before) if change.before else None

    previous_steps = before.step_count if before else 0
    previous_earnings = before.earnings if before else ZERO
    if after.is_validated or after.step_count == previous_steps:
        return False

    if now is None:
        now = utcnow()
    user = await get_user(db, after.user_id)
    if user is None:
        logger.error("User not found: %s", after.user_id)
        return False
    display_name, photo_url = user.display_name or "", user.photo_url or ""

    # The daily reset may reprice the record after the image was taken.
    stored_multiplier = await db.scalar(
        select(StepRecord.multiplier).where(StepRecord.user_id == after.user_id, StepRecord.date == after.date)
    )
    multiplier = stored_multiplier if stored_multiplier is not None else after.multiplier
    capped, earnings = compute_earnings(after.step_count, multiplier, user.has_active_premium(now))

    claimed = await db.execute(
        update(StepRecord)
        .where(
            StepRecord.user_id == after.user_id,
            StepRecord.date == after.date,
            StepRecord.is_validated.is_(False),
            StepRecord.step_count == after.step_count,
            StepRecord.multiplier == multiplier,
        )
        .values(step_count=capped, earnings=earnings, is_validated=True, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        await db.rollback()
        logger.info("Step record %s already validated or superseded", change.doc_id)
        return False

    ledger = BalanceLedger(db, redis)
    incremental = earnings - previous_earnings
    # Corrections that lower earnings are not clawed back.
    if incremental > 0:
        await ledger.credit(
            after.user_id,
            incremental,
            TransactionType.STEPS_EARNINGS.value,
            f"Earnings from {capped} steps",
        )
        await db.execute(
            update(User)
            .where(User.id == after.user_id)
            .values(lifetime_steps=User.lifetime_steps + max(0, capped - previous_steps))
            .execution_options(synchronize_session=False)
        )
    await ledger.commit()
    logger.info(
        "Validated steps: user=%s date=%s steps=%d earnings=%s credited=%s",
        after.user_id, after.date, capped, earnings, max(incremental, ZERO),
    )

    await record_tournament_progress(db, after.user_id, display_name, photo_url, capped, now)
    return True


async def sync_steps(
    db: AsyncSession,
    redis: object,
    user_id: str,
    step_count: Any,
    now: datetime | None = None,
) -> StepRecord:
    """Record the client's step count for today.

    Counts only move up. A validated record is final; later syncs for the
    same day are rejected.
    """
    if isinstance(step_count, bool) or not isinstance(step_count, int) or step_count < 0:
        raise InvalidArgument("Step count must be a non-negative integer")
    if now is None:
        now = utcnow()
    today = reference_today(now)
    user = await require_user(db, user_id)

    record = await _get_record(db, user_id, today)
    if record is None:
        record = StepRecord(
            user_id=user_id,
            date=today,
            step_count=step_count,
            earnings=ZERO,
            multiplier=streak_multiplier(user.current_streak),
            is_validated=False,
            created_at=now,
            updated_at=now,
        )
        db.add(record)
        try:
            await db.flush()
        except IntegrityError:
            # The daily reset opened the record concurrently.
            await db.rollback()
            record = await _get_record(db, user_id, today)
        else:
            stage_change(db, STEPS_WRITTEN, DocumentChange(str(record.id), None, record.snapshot()))
            await db.commit()
            await flush_staged(db, redis)
            return record

    if record is None:
        raise FailedPrecondition("Step record changed concurrently, retry")
    if record.is_validated:
        raise FailedPrecondition("Steps for today are already validated")
    if step_count <= record.step_count:
        return record

    before = record.snapshot()
    result = await db.execute(
        update(StepRecord)
        .where(
            StepRecord.id == record.id,
            StepRecord.is_validated.is_(False),
            StepRecord.step_count == record.step_count,
        )
        .values(step_count=step_count, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise FailedPrecondition("Step record changed concurrently, retry")
    stage_change(db, STEPS_WRITTEN, DocumentChange(str(record.id), before, {**before, "step_count": step_count}))
    await db.commit()
    await flush_staged(db, redis)

    return await _get_record(db, user_id, today)


async def _get_record(db: AsyncSession, user_id: str, day: Any) -> StepRecord | None:
    result = await db.execute(
        select(StepRecord)
        .where(StepRecord.user_id == user_id, StepRecord.date == day)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_step_stats(db: AsyncSession, user_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Daily records for the stats window (oldest first) plus aggregates."""
    settings = get_settings()
    since = reference_today(now) - timedelta(days=settings.step_stats_days - 1)
    result = await db.execute(
        select(StepRecord)
        .where(StepRecord.user_id == user_id, StepRecord.date >= since)
        .order_by(StepRecord.date.asc())
    )
    records = list(result.scalars().all())

    total_steps = 0
    total_earnings = ZERO
    best_day: dict[str, Any] = {"date": None, "steps": 0}
    daily_data = []
    for record in records:
        daily_data.append({
            "id": record.id,
            "date": record.date,
            "step_count": record.step_count,
            "earnings": record.earnings,
        })
        total_steps += record.step_count
        total_earnings += record.earnings
        if record.step_count > best_day["steps"]:
            best_day = {"date": record.date, "steps": record.step_count}

    return {
        "daily_data": daily_data,
        "stats": {
            "total_steps": total_steps,
            "total_earnings": total_earnings,
            "avg_steps": total_steps / len(records) if records else 0,
            "best_day": best_day,
        },
    }
