"""Integration tests for the cashout workflow: request, automatic review, admin transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from conftest import create_user, make_admin, published
from steprewards.cashouts.service import (
    get_cashout,
    process_cashout_request,
    request_cashout,
    update_cashout_status,
)
from steprewards.db.models import Cashout, Transaction
from steprewards.errors import FailedPrecondition, InvalidArgument, NotFound, PermissionDenied
from steprewards.triggers.events import CASHOUTS_CREATED, DocumentChange
from steprewards.users.service import get_user

NOW = datetime(2026, 3, 10, 17, 0, tzinfo=timezone.utc)


async def _file(db, user_id: str, amount="10.00") -> Cashout:
    return await request_cashout(db, None, user_id, Decimal(amount), "pay@example.com", NOW)


class TestRequestCashout:

    @pytest.mark.asyncio
    async def test_below_minimum_rejected_without_effect(self, db_session):
        await create_user(db_session, "walker", balance="12.00")
        with pytest.raises(InvalidArgument, match=r"Minimum cashout amount is \$10.00"):
            await request_cashout(db_session, None, "walker", 9.99, "pay@example.com", NOW)

        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("12.00")
        assert await db_session.scalar(select(Cashout)) is None

    @pytest.mark.asyncio
    async def test_minimum_reserves_funds(self, db_session):
        await create_user(db_session, "walker", balance="12.00")
        redis = AsyncMock()

        cashout = await request_cashout(db_session, redis, "walker", 10.00, "pay@example.com", NOW)

        assert cashout.status == "pending"
        assert cashout.amount == Decimal("10.00")
        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("2.00")
        assert user.pending_cashout == Decimal("10.00")
        [change] = published(redis, CASHOUTS_CREATED)
        assert change.doc_id == str(cashout.id)
        assert change.after["status"] == "pending"

    @pytest.mark.parametrize("amount", [float("nan"), float("inf"), 1e30, "10"])
    @pytest.mark.asyncio
    async def test_unusable_amount_rejected(self, db_session, amount):
        await create_user(db_session, "walker", balance="12.00")
        with pytest.raises(InvalidArgument):
            await request_cashout(db_session, None, "walker", amount, "pay@example.com", NOW)
        assert (await get_user(db_session, "walker")).pending_cashout == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, db_session):
        await create_user(db_session, "walker", balance="9.00")
        with pytest.raises(FailedPrecondition):
            await request_cashout(db_session, None, "walker", 10, "pay@example.com", NOW)
        assert await db_session.scalar(select(Cashout)) is None

    @pytest.mark.parametrize("email", ["", "not-an-email", None, "a@b"])
    @pytest.mark.asyncio
    async def test_invalid_paypal_email(self, db_session, email):
        await create_user(db_session, "walker", balance="12.00")
        with pytest.raises(InvalidArgument, match="PayPal"):
            await request_cashout(db_session, None, "walker", 10, email, NOW)

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(NotFound):
            await request_cashout(db_session, None, "ghost", 10, "pay@example.com", NOW)


class TestProcessCashoutRequest:

    @pytest.mark.asyncio
    async def test_premium_auto_approved(self, db_session, mock_notifier):
        await create_user(db_session, "runner", balance="20.00", is_premium=True, email="runner@example.com")
        cashout = await _file(db_session, "runner")
        change = DocumentChange(str(cashout.id), None, {"status": "pending"})

        assert await process_cashout_request(db_session, mock_notifier, change, NOW) == "approved"

        refreshed = await get_cashout(db_session, cashout.id)
        assert refreshed.status == "approved"
        assert refreshed.processed_by == "system"
        assert refreshed.processed_at is not None
        mock_notifier.notify_operations.assert_awaited_once()
        assert mock_notifier.notify_operations.await_args.args[0] == "cashout_requested"
        mock_notifier.send_template.assert_awaited_once()
        to, template, _context = mock_notifier.send_template.await_args.args
        assert (to, template) == ("runner@example.com", "cashout_approved")

        # Redelivery changes nothing and sends nothing.
        assert await process_cashout_request(db_session, mock_notifier, change, NOW) is None
        assert mock_notifier.notify_operations.await_count == 1
        assert mock_notifier.send_template.await_count == 1

    @pytest.mark.asyncio
    async def test_free_user_stays_pending(self, db_session, mock_notifier):
        await create_user(db_session, "walker", balance="20.00")
        cashout = await _file(db_session, "walker")

        result = await process_cashout_request(db_session, mock_notifier, DocumentChange(str(cashout.id), None, {}), NOW)

        assert result == "pending"
        assert (await get_cashout(db_session, cashout.id)).status == "pending"
        mock_notifier.notify_operations.assert_awaited_once()
        mock_notifier.send_template.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redelivered_pending_request_alerts_once(self, db_session, mock_notifier):
        await create_user(db_session, "walker", balance="20.00")
        cashout = await _file(db_session, "walker")
        change = DocumentChange(str(cashout.id), None, {"status": "pending"})

        assert await process_cashout_request(db_session, mock_notifier, change, NOW) == "pending"
        assert await process_cashout_request(db_session, mock_notifier, change, NOW) is None

        mock_notifier.notify_operations.assert_awaited_once()
        assert (await get_cashout(db_session, cashout.id)).operations_notified_at == NOW

    @pytest.mark.asyncio
    async def test_upgrade_after_alert_approves_without_second_alert(self, db_session, mock_notifier):
        user = await create_user(db_session, "walker", balance="20.00")
        cashout = await _file(db_session, "walker")
        change = DocumentChange(str(cashout.id), None, {"status": "pending"})
        await process_cashout_request(db_session, mock_notifier, change, NOW)

        user.is_premium = True
        await db_session.commit()

        assert await process_cashout_request(db_session, mock_notifier, change, NOW) == "approved"
        mock_notifier.notify_operations.assert_awaited_once()
        mock_notifier.send_template.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_below_minimum_row_rejected(self, db_session, mock_notifier):
        await create_user(db_session, "walker", balance="20.00")
        cashout = Cashout(user_id="walker", amount=Decimal("5.00"), paypal_email="pay@example.com", status="pending")
        db_session.add(cashout)
        await db_session.commit()

        result = await process_cashout_request(db_session, mock_notifier, DocumentChange(str(cashout.id), None, {}), NOW)

        assert result == "rejected"
        refreshed = await get_cashout(db_session, cashout.id)
        assert refreshed.rejection_reason == "Minimum cashout amount is $10.00"
        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("20.00")
        assert user.pending_cashout == Decimal("0.00")
        mock_notifier.notify_operations.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_user_rejected(self, db_session, mock_notifier):
        cashout = Cashout(user_id="ghost", amount=Decimal("15.00"), paypal_email="pay@example.com", status="pending")
        db_session.add(cashout)
        await db_session.commit()

        result = await process_cashout_request(db_session, mock_notifier, DocumentChange(str(cashout.id), None, {}), NOW)

        assert result == "rejected"
        assert (await get_cashout(db_session, cashout.id)).rejection_reason == "User not found"

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_block(self, db_session, mock_notifier):
        await create_user(db_session, "runner", balance="20.00", is_premium=True)
        cashout = await _file(db_session, "runner")
        mock_notifier.notify_operations.side_effect = RuntimeError("smtp down")

        result = await process_cashout_request(db_session, mock_notifier, DocumentChange(str(cashout.id), None, {}), NOW)

        assert result == "approved"
        assert (await get_cashout(db_session, cashout.id)).status == "approved"


class TestUpdateCashoutStatus:

    @pytest.mark.asyncio
    async def test_requires_admin(self, db_session, mock_notifier):
        await create_user(db_session, "walker", balance="20.00")
        cashout = await _file(db_session, "walker")
        with pytest.raises(PermissionDenied, match="admin"):
            await update_cashout_status(db_session, None, mock_notifier, "walker", cashout.id, "approved")

    @pytest.mark.asyncio
    async def test_argument_checks(self, db_session, mock_notifier):
        await make_admin(db_session, "boss")
        with pytest.raises(InvalidArgument, match="Cashout ID"):
            await update_cashout_status(db_session, None, mock_notifier, "boss", None, "approved")
        with pytest.raises(InvalidArgument, match="Status"):
            await update_cashout_status(db_session, None, mock_notifier, "boss", 1, "pending")
        with pytest.raises(NotFound, match="Cashout request not found"):
            await update_cashout_status(db_session, None, mock_notifier, "boss", 404, "approved")

    @pytest.mark.asyncio
    async def test_reject_releases_funds(self, db_session, mock_notifier):
        await make_admin(db_session, "boss")
        await create_user(db_session, "walker", balance="12.00", email="walker@example.com")
        cashout = await _file(db_session, "walker")

        updated = await update_cashout_status(
            db_session, None, mock_notifier, "boss", cashout.id, "rejected", "Suspicious activity", NOW,
        )

        assert updated.status == "rejected"
        assert updated.rejection_reason == "Suspicious activity"
        assert updated.processed_by == "boss"
        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("12.00")
        assert user.pending_cashout == Decimal("0.00")
        to, template, context = mock_notifier.send_template.await_args.args
        assert (to, template) == ("walker@example.com", "cashout_rejected")
        assert context["reason"] == "Suspicious activity"

    @pytest.mark.asyncio
    async def test_approve_then_complete_debits(self, db_session, mock_notifier):
        await make_admin(db_session, "boss")
        await create_user(db_session, "walker", balance="12.00")
        cashout = await _file(db_session, "walker")

        approved = await update_cashout_status(db_session, None, mock_notifier, "boss", cashout.id, "approved")
        assert approved.status == "approved"
        assert approved.rejection_reason is None
        completed = await update_cashout_status(
            db_session, None, mock_notifier, "boss", cashout.id, "completed", now=NOW,
        )
        assert completed.status == "completed"
        assert mock_notifier.send_template.await_args.args[2]["completed_at"] == NOW

        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("2.00")
        assert user.pending_cashout == Decimal("0.00")
        assert user.total_earnings == Decimal("12.00")
        tx = await db_session.scalar(select(Transaction).where(Transaction.type == "cashout"))
        assert tx.amount == Decimal("-10.00")
        assert tx.description == "Cashout to PayPal (pay@example.com)"
        templates = [c.args[1] for c in mock_notifier.send_template.await_args_list]
        assert templates == ["cashout_approved", "cashout_completed"]

    @pytest.mark.asyncio
    async def test_terminal_states_refuse_transitions(self, db_session, mock_notifier):
        await make_admin(db_session, "boss")
        await create_user(db_session, "walker", balance="12.00")
        cashout = await _file(db_session, "walker")
        await update_cashout_status(db_session, None, mock_notifier, "boss", cashout.id, "completed")

        with pytest.raises(FailedPrecondition, match="Invalid transition"):
            await update_cashout_status(db_session, None, mock_notifier, "boss", cashout.id, "rejected")

        user = await get_user(db_session, "walker")
        assert user.available_balance == Decimal("2.00")
        assert user.pending_cashout == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_approved_cannot_be_rejected(self, db_session, mock_notifier):
        await make_admin(db_session, "boss")
        await create_user(db_session, "walker", balance="12.00")
        cashout = await _file(db_session, "walker")
        await update_cashout_status(db_session, None, mock_notifier, "boss", cashout.id, "approved")

        with pytest.raises(FailedPrecondition):
            await update_cashout_status(db_session, None, mock_notifier, "boss", cashout.id, "rejected")
