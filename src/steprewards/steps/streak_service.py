"""Streak tracking: the daily reset run at midnight in the reference timezone."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.clock import reference_today, reference_yesterday
from steprewards.config import get_settings
from steprewards.db.models import ZERO, StepRecord, User
from steprewards.db.types import utcnow

logger = logging.getLogger(__name__)


def next_streak(current_streak: int, yesterday_steps: int | None) -> int:
    """Streak after a day: +1 (capped) when yesterday met the threshold, else 0."""
    settings = get_settings()
    if yesterday_steps is not None and yesterday_steps >= settings.streak_threshold_steps:
        return min(current_streak + 1, settings.max_streak)
    return 0


def streak_multiplier(streak: int) -> Decimal:
    """Earnings multiplier for a streak: 1.0 + 0.1 per streak day."""
    return Decimal("1.0") + get_settings().streak_multiplier_step * streak


async def daily_reset(db: AsyncSession, now: datetime | None = None) -> int:
    """Advance or reset every user's streak and open today's step record.

    Runs as one batch. Users already processed today (``last_streak_date``)
    are skipped, so a re-delivered tick is a no-op. Returns number of users
    processed.
    """
    if now is None:
        now = utcnow()
    today = reference_today(now)
    yesterday = reference_yesterday(now)

    not_processed = or_(User.last_streak_date.is_(None), User.last_streak_date != today)
    users = (await db.execute(select(User.id, User.current_streak).where(not_processed))).all()

    yesterday_steps = dict(
        (await db.execute(
            select(StepRecord.user_id, StepRecord.step_count).where(StepRecord.date == yesterday)
        )).all()
    )
    has_today = set(
        (await db.execute(select(StepRecord.user_id).where(StepRecord.date == today))).scalars().all()
    )

    for user_id, current_streak in users:
        streak = next_streak(current_streak or 0, yesterday_steps.get(user_id))
        await db.execute(
            update(User)
            .where(User.id == user_id, not_processed)
            .values(current_streak=streak, last_streak_date=today)
            .execution_options(synchronize_session=False)
        )
        if user_id in has_today:
            # Opened by a sync before this run; price it at the new streak.
            await db.execute(
                update(StepRecord)
                .where(
                    StepRecord.user_id == user_id,
                    StepRecord.date == today,
                    StepRecord.is_validated.is_(False),
                )
                .values(multiplier=streak_multiplier(streak), updated_at=now)
                .execution_options(synchronize_session=False)
            )
        else:
            db.add(StepRecord(
                user_id=user_id,
                date=today,
                step_count=0,
                earnings=ZERO,
                multiplier=streak_multiplier(streak),
                is_validated=False,
                created_at=now,
                updated_at=now,
            ))

    await db.commit()
    logger.info("Processed %d users for streak updates", len(users))
    return len(users)
