"""Trigger dispatcher: stream routing and the end-to-end event pipeline."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import published
from steprewards.cashouts.service import get_cashout, request_cashout
from steprewards.referrals.service import generate_referral_code
from steprewards.steps.service import sync_steps
from steprewards.triggers.dispatcher import TriggerDispatcher
from steprewards.triggers.events import (
    CASHOUTS_CREATED,
    STEPS_WRITTEN,
    USERS_CREATED,
    USERS_UPDATED,
    DocumentChange,
)
from steprewards.users.service import get_user
from steprewards.workers.trigger_runner import decode_entry


DAY_ONE = datetime(2026, 3, 10, 17, 0, tzinfo=timezone.utc)


def _entry(change: DocumentChange) -> dict:
    return decode_entry(change.to_message())


class TestDispatch:

    @pytest.mark.asyncio
    async def test_users_created(self, db_session, mock_notifier):
        dispatcher = TriggerDispatcher(db_session, None, mock_notifier)
        ok = await dispatcher.dispatch(USERS_CREATED, "1-0", {"uid": "newbie", "email": "n@example.com"})
        assert ok is True
        assert (await get_user(db_session, "newbie")).email == "n@example.com"

    @pytest.mark.asyncio
    async def test_users_created_from_flat_entry(self, db_session, mock_notifier):
        dispatcher = TriggerDispatcher(db_session, None, mock_notifier)
        data = decode_entry({"uid": "flat", "email": "flat@example.com"})
        assert await dispatcher.dispatch(USERS_CREATED, "1-0", data) is True
        assert (await get_user(db_session, "flat")).email == "flat@example.com"

    @pytest.mark.asyncio
    async def test_unknown_stream_is_acknowledged(self, db_session, mock_notifier):
        dispatcher = TriggerDispatcher(db_session, None, mock_notifier)
        assert await dispatcher.dispatch("store:other:written", "1-0", {"doc_id": "1"}) is True

    @pytest.mark.asyncio
    async def test_handler_failure_reported(self, db_session, mock_notifier):
        dispatcher = TriggerDispatcher(db_session, None, mock_notifier)
        bad = {"doc_id": "1", "before": None, "after": {"step_count": 10}}
        assert await dispatcher.dispatch(STEPS_WRITTEN, "1-0", bad) is False


class TestPipeline:

    @pytest.mark.asyncio
    async def test_signup_steps_referral_cashout(self, db_session, mock_notifier):
        """Events produced by each stage drive the next one."""
        redis = AsyncMock()
        dispatcher = TriggerDispatcher(db_session, redis, mock_notifier)

        await dispatcher.dispatch(USERS_CREATED, "1-0", {"uid": "referrer", "display_name": "Ref"})
        await dispatcher.dispatch(USERS_CREATED, "2-0", {
            "uid": "newbie",
            "display_name": "Newbie",
            "email": "newbie@example.com",
            "referral_code": generate_referral_code("referrer"),
        })

        # Five days of capped walking; day three crosses the $5.00 threshold.
        for day in range(5):
            await sync_steps(db_session, redis, "newbie", 20_000, DAY_ONE + timedelta(days=day))
        for i, change in enumerate(published(redis, STEPS_WRITTEN)):
            assert await dispatcher.dispatch(STEPS_WRITTEN, f"{10 + i}-0", _entry(change)) is True

        newbie = await get_user(db_session, "newbie")
        assert newbie.total_earnings == Decimal("10.00")

        for i, change in enumerate(published(redis, USERS_UPDATED)):
            await dispatcher.dispatch(USERS_UPDATED, f"{20 + i}-0", _entry(change))
        assert (await get_user(db_session, "referrer")).available_balance == Decimal("1.00")

        # Redelivering every user change pays nothing more.
        for change in published(redis, USERS_UPDATED):
            await dispatcher.dispatch(USERS_UPDATED, "99-0", _entry(change))
        assert (await get_user(db_session, "referrer")).available_balance == Decimal("1.00")

        cashout = await request_cashout(db_session, redis, "newbie", 10, "newbie@example.com")
        [created] = published(redis, CASHOUTS_CREATED)
        assert await dispatcher.dispatch(CASHOUTS_CREATED, "30-0", _entry(created)) is True
        assert (await get_cashout(db_session, cashout.id)).status == "pending"
        mock_notifier.notify_operations.assert_awaited_once()
