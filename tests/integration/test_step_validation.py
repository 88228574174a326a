"""Integration tests for step sync and validation: idempotence, caps, redelivery."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from conftest import create_user, published
from steprewards.db.models import StepRecord, Tournament, TournamentParticipant, Transaction
from steprewards.errors import FailedPrecondition, InvalidArgument, NotFound
from steprewards.steps.service import get_step_stats, sync_steps, validate_steps
from steprewards.triggers.events import STEPS_WRITTEN, DocumentChange
from steprewards.users.service import get_user

# 13:00 in New York, 2026-03-10
NOW = datetime(2026, 3, 10, 17, 0, tzinfo=timezone.utc)
TODAY = date(2026, 3, 10)


async def _transactions(db, user_id: str) -> list[Transaction]:
    result = await db.execute(select(Transaction).where(Transaction.user_id == user_id).order_by(Transaction.id))
    return list(result.scalars().all())


class TestSyncSteps:

    @pytest.mark.asyncio
    async def test_creates_todays_record(self, db_session):
        await create_user(db_session, "walker", current_streak=3)
        redis = AsyncMock()

        record = await sync_steps(db_session, redis, "walker", 5000, NOW)

        assert record.date == TODAY
        assert record.step_count == 5000
        assert record.multiplier == Decimal("1.3")
        assert record.is_validated is False
        [change] = published(redis, STEPS_WRITTEN)
        assert change.before is None
        assert change.after["step_count"] == 5000

    @pytest.mark.asyncio
    async def test_counts_only_increase(self, db_session):
        await create_user(db_session, "walker")
        redis = AsyncMock()
        await sync_steps(db_session, redis, "walker", 5000, NOW)

        record = await sync_steps(db_session, redis, "walker", 3000, NOW)

        assert record.step_count == 5000
        assert len(published(redis, STEPS_WRITTEN)) == 1

    @pytest.mark.asyncio
    async def test_update_publishes_before_and_after(self, db_session):
        await create_user(db_session, "walker")
        redis = AsyncMock()
        await sync_steps(db_session, redis, "walker", 2000, NOW)
        await sync_steps(db_session, redis, "walker", 6000, NOW)

        changes = published(redis, STEPS_WRITTEN)
        assert len(changes) == 2
        assert changes[1].before["step_count"] == 2000
        assert changes[1].after["step_count"] == 6000
        assert changes[0].doc_id == changes[1].doc_id

    @pytest.mark.parametrize("count", [-1, 1.5, "100", None, True])
    @pytest.mark.asyncio
    async def test_invalid_counts(self, db_session, count):
        await create_user(db_session, "walker")
        with pytest.raises(InvalidArgument):
            await sync_steps(db_session, None, "walker", count, NOW)

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(NotFound):
            await sync_steps(db_session, None, "ghost", 100, NOW)

    @pytest.mark.asyncio
    async def test_validated_record_is_final(self, db_session):
        await create_user(db_session, "walker")
        redis = AsyncMock()
        await sync_steps(db_session, redis, "walker", 5000, NOW)
        await validate_steps(db_session, redis, published(redis, STEPS_WRITTEN)[0], NOW)

        with pytest.raises(FailedPrecondition, match="already validated"):
            await sync_steps(db_session, redis, "walker", 9000, NOW)


class TestValidateSteps:

    @pytest.mark.asyncio
    async def test_credits_earnings(self, db_session):
        await create_user(db_session, "walker")
        redis = AsyncMock()
        await sync_steps(db_session, redis, "walker", 5000, NOW)
        change = published(redis, STEPS_WRITTEN)[0]

        assert await validate_steps(db_session, redis, change, NOW) is True

        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("0.50")
        assert user.total_earnings == Decimal("0.50")
        assert user.lifetime_steps == 5000
        [tx] = await _transactions(db_session, "walker")
        assert tx.type == "steps_earnings"
        assert tx.description == "Earnings from 5000 steps"
        record = await db_session.scalar(
            select(StepRecord).where(StepRecord.user_id == "walker").execution_options(populate_existing=True)
        )
        assert record.is_validated is True
        assert record.earnings == Decimal("0.50")

    @pytest.mark.asyncio
    async def test_redelivery_credits_once(self, db_session):
        await create_user(db_session, "walker")
        redis = AsyncMock()
        await sync_steps(db_session, redis, "walker", 5000, NOW)
        change = published(redis, STEPS_WRITTEN)[0]

        assert await validate_steps(db_session, redis, change, NOW) is True
        assert await validate_steps(db_session, redis, change, NOW) is False

        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("0.50")
        assert len(await _transactions(db_session, "walker")) == 1

    @pytest.mark.asyncio
    async def test_superseded_write_is_skipped(self, db_session):
        await create_user(db_session, "walker")
        redis = AsyncMock()
        await sync_steps(db_session, redis, "walker", 2000, NOW)
        await sync_steps(db_session, redis, "walker", 6000, NOW)
        stale, latest = published(redis, STEPS_WRITTEN)

        assert await validate_steps(db_session, redis, stale, NOW) is False
        assert await validate_steps(db_session, redis, latest, NOW) is True

        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("0.60")
        # Increment is measured from the previous write's count.
        assert user.lifetime_steps == 4000

    @pytest.mark.asyncio
    async def test_free_caps(self, db_session):
        await create_user(db_session, "walker")
        redis = AsyncMock()
        await sync_steps(db_session, redis, "walker", 25_000, NOW)
        await validate_steps(db_session, redis, published(redis, STEPS_WRITTEN)[0], NOW)

        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("2.00")
        assert user.lifetime_steps == 20_000
        [tx] = await _transactions(db_session, "walker")
        assert tx.description == "Earnings from 20000 steps"

    @pytest.mark.asyncio
    async def test_premium_caps(self, db_session):
        await create_user(db_session, "runner", is_premium=True)
        redis = AsyncMock()
        await sync_steps(db_session, redis, "runner", 45_000, NOW)
        await validate_steps(db_session, redis, published(redis, STEPS_WRITTEN)[0], NOW)

        user = await get_user(db_session, "runner")
        assert user.available_balance == Decimal("4.00")
        assert user.lifetime_steps == 40_000

    @pytest.mark.asyncio
    async def test_streak_multiplier_applied(self, db_session):
        await create_user(db_session, "walker", current_streak=5)
        redis = AsyncMock()
        await sync_steps(db_session, redis, "walker", 10_000, NOW)
        await validate_steps(db_session, redis, published(redis, STEPS_WRITTEN)[0], NOW)

        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("1.50")

    @pytest.mark.asyncio
    async def test_stored_multiplier_beats_stale_image(self, db_session):
        await create_user(db_session, "walker", current_streak=7)
        redis = AsyncMock()
        await sync_steps(db_session, redis, "walker", 10_000, NOW)
        [change] = published(redis, STEPS_WRITTEN)
        assert Decimal(str(change.after["multiplier"])) == Decimal("1.7")
        record = await db_session.scalar(select(StepRecord).where(StepRecord.user_id == "walker"))
        record.multiplier = Decimal("1.00")
        await db_session.commit()

        assert await validate_steps(db_session, redis, change, NOW) is True

        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("1.00")

    @pytest.mark.asyncio
    async def test_unchanged_count_is_noop(self, db_session):
        await create_user(db_session, "walker")
        change = DocumentChange(
            "1", None, {"user_id": "walker", "date": TODAY.isoformat(), "step_count": 0, "is_validated": False},
        )
        assert await validate_steps(db_session, None, change, NOW) is False

    @pytest.mark.asyncio
    async def test_already_validated_image_is_noop(self, db_session):
        await create_user(db_session, "walker")
        change = DocumentChange(
            "1",
            {"user_id": "walker", "date": TODAY.isoformat(), "step_count": 100},
            {"user_id": "walker", "date": TODAY.isoformat(), "step_count": 5000, "is_validated": True},
        )
        assert await validate_steps(db_session, None, change, NOW) is False

    @pytest.mark.asyncio
    async def test_missing_user_is_logged_not_raised(self, db_session):
        change = DocumentChange(
            "1", None, {"user_id": "ghost", "date": TODAY.isoformat(), "step_count": 5000},
        )
        assert await validate_steps(db_session, None, change, NOW) is False

    @pytest.mark.asyncio
    async def test_records_tournament_progress(self, db_session):
        await create_user(db_session, "walker")
        tournament = Tournament(
            name="March Madness",
            start_date=NOW - timedelta(days=3),
            end_date=NOW + timedelta(days=3),
            prize_pool=Decimal("10.00"),
            prizes={"1": "5.00"},
        )
        db_session.add(tournament)
        await db_session.commit()
        redis = AsyncMock()

        await sync_steps(db_session, redis, "walker", 30_000, NOW)
        await validate_steps(db_session, redis, published(redis, STEPS_WRITTEN)[0], NOW)

        participant = await db_session.scalar(
            select(TournamentParticipant).where(TournamentParticipant.tournament_id == tournament.id)
        )
        assert participant.user_id == "walker"
        assert participant.step_count == 20_000
        refreshed = await db_session.get(Tournament, tournament.id, populate_existing=True)
        assert refreshed.participants_count == 1


class TestStepStats:

    @pytest.mark.asyncio
    async def test_window_and_aggregates(self, db_session):
        await create_user(db_session, "walker")
        for days_ago, steps, earned in [(0, 4000, "0.40"), (1, 12000, "1.20"), (2, 2000, "0.20"), (45, 30000, "2.00")]:
            db_session.add(StepRecord(
                user_id="walker",
                date=TODAY - timedelta(days=days_ago),
                step_count=steps,
                earnings=Decimal(earned),
                is_validated=days_ago > 0,
            ))
        await db_session.commit()

        stats = await get_step_stats(db_session, "walker", NOW)

        assert [d["date"] for d in stats["daily_data"]] == [
            TODAY - timedelta(days=2), TODAY - timedelta(days=1), TODAY,
        ]
        assert stats["stats"]["total_steps"] == 18_000
        assert stats["stats"]["total_earnings"] == Decimal("1.80")
        assert stats["stats"]["avg_steps"] == 6000
        assert stats["stats"]["best_day"] == {"date": TODAY - timedelta(days=1), "steps": 12_000}

    @pytest.mark.asyncio
    async def test_window_is_thirty_days(self, db_session):
        await create_user(db_session, "walker")
        for offset in range(31):
            db_session.add(StepRecord(
                user_id="walker", date=TODAY - timedelta(days=offset), step_count=1000 + offset,
                earnings=Decimal("0.10"), is_validated=True,
            ))
        await db_session.commit()

        stats = await get_step_stats(db_session, "walker", NOW)

        dates = [d["date"] for d in stats["daily_data"]]
        assert len(dates) == 30
        assert dates[0] == TODAY - timedelta(days=29)
        assert dates[-1] == TODAY

    @pytest.mark.asyncio
    async def test_no_records(self, db_session):
        await create_user(db_session, "walker")
        stats = await get_step_stats(db_session, "walker", NOW)
        assert stats["daily_data"] == []
        assert stats["stats"]["avg_steps"] == 0
        assert stats["stats"]["best_day"] == {"date": None, "steps": 0}
