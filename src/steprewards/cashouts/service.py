"""Cashout workflow: request, automatic review and admin transitions.

State machine:
    pending  -> approved | rejected | completed
    approved -> completed
    rejected, completed are terminal

Every transition is a conditional update on the current status, so a
replayed trigger or a racing admin finds the row already moved and stops.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.config import get_settings
from steprewards.db.models import Cashout
from steprewards.db.types import utcnow
from steprewards.errors import FailedPrecondition, InvalidArgument, NotFound, PermissionDenied
from steprewards.ledger.service import BalanceLedger, TransactionType, parse_amount
from steprewards.notifications.service import EmailService
from steprewards.triggers.events import CASHOUTS_CREATED, DocumentChange
from steprewards.triggers.outbox import stage_change
from steprewards.users.service import get_user, is_admin

logger = logging.getLogger(__name__)

SYSTEM_PROCESSOR = "system"

VALID_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["approved", "rejected", "completed"],
    "approved": ["completed"],
    "rejected": [],
    "completed": [],
}

ADMIN_TARGET_STATUSES = ("approved", "rejected", "completed")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a state transition. Raises FailedPrecondition if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise FailedPrecondition(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


def minimum_amount_reason() -> str:
    return f"Minimum cashout amount is ${get_settings().min_cashout_amount:.2f}"


def cashout_snapshot(cashout: Cashout) -> dict[str, Any]:
    return {
        "user_id": cashout.user_id,
        "amount": str(cashout.amount),
        "paypal_email": cashout.paypal_email,
        "status": cashout.status,
    }


async def get_cashout(db: AsyncSession, cashout_id: int) -> Cashout | None:
    result = await db.execute(
        select(Cashout)
        .where(Cashout.id == cashout_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _transition(
    db: AsyncSession,
    cashout_id: int,
    current_status: str,
    target_status: str,
    *,
    processed_by: str,
    now: datetime,
    rejection_reason: str | None = None,
) -> bool:
    values: dict[str, Any] = {
        "status": target_status,
        "processed_at": now,
        "processed_by": processed_by,
    }
    if rejection_reason is not None:
        values["rejection_reason"] = rejection_reason
    result = await db.execute(
        update(Cashout)
        .where(Cashout.id == cashout_id, Cashout.status == current_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def _claim_operations_alert(db: AsyncSession, cashout_id: int, now: datetime) -> bool:
    """Mark the operations alert as sent; False when an earlier delivery already did."""
    result = await db.execute(
        update(Cashout)
        .where(Cashout.id == cashout_id, Cashout.operations_notified_at.is_(None))
        .values(operations_notified_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def _notify(
    notifier: EmailService | None,
    to: str | None,
    template_name: str,
    context: dict[str, Any],
) -> None:
    """Best-effort send; failures are logged and never propagate."""
    if notifier is None:
        return
    try:
        if to is None:
            sent = await notifier.notify_operations(template_name, context)
        else:
            sent = await notifier.send_template(to, template_name, context)
    except Exception:
        logger.exception("Failed to send %s notification", template_name)
        return
    if not sent:
        logger.warning("Notification %s was not delivered", template_name)


# ---------------------------------------------------------------------------
# Request path
# ---------------------------------------------------------------------------


async def request_cashout(
    db: AsyncSession,
    redis: object,
    user_id: str,
    amount: Any,
    paypal_email: Any,
    now: datetime | None = None,
) -> Cashout:
    """Reserve funds and file a pending cashout in one batch."""
    if isinstance(amount, str):
        raise InvalidArgument("Amount must be a positive number")
    value = parse_amount(amount)
    if value < get_settings().min_cashout_amount:
        raise InvalidArgument(minimum_amount_reason())
    if not isinstance(paypal_email, str) or not _EMAIL_RE.match(paypal_email.strip()):
        raise InvalidArgument("A valid PayPal email must be specified")
    if now is None:
        now = utcnow()

    ledger = BalanceLedger(db, redis)
    try:
        await ledger.reserve(user_id, value)
        cashout = Cashout(
            user_id=user_id,
            amount=value,
            paypal_email=paypal_email.strip(),
            status="pending",
            created_at=now,
        )
        db.add(cashout)
        await db.flush()
        stage_change(db, CASHOUTS_CREATED, DocumentChange(str(cashout.id), None, cashout_snapshot(cashout)))
    except Exception:
        await ledger.rollback()
        raise
    await ledger.commit()

    logger.info("Cashout requested: id=%s user=%s amount=%s", cashout.id, user_id, value)
    return cashout


# ---------------------------------------------------------------------------
# Creation trigger
# ---------------------------------------------------------------------------


async def process_cashout_request(
    db: AsyncSession,
    notifier: EmailService | None,
    change: DocumentChange,
    now: datetime | None = None,
) -> str | None:
    """Review a newly created cashout.

    Returns the status this delivery moved the cashout to, or None when it
    changed nothing.
    """
    if now is None:
        now = utcnow()
    cashout = await get_cashout(db, int(change.doc_id))
    if cashout is None:
        logger.error("Cashout %s not found", change.doc_id)
        return None
    if cashout.status != "pending":
        return None

    cashout_id, user_id = cashout.id, cashout.user_id
    amount, paypal_email, created_at = cashout.amount, cashout.paypal_email, cashout.created_at

    if amount < get_settings().min_cashout_amount:
        moved = await _transition(
            db, cashout_id, "pending", "rejected",
            processed_by=SYSTEM_PROCESSOR, now=now, rejection_reason=minimum_amount_reason(),
        )
        await db.commit()
        return "rejected" if moved else None

    user = await get_user(db, user_id)
    if user is None:
        moved = await _transition(
            db, cashout_id, "pending", "rejected",
            processed_by=SYSTEM_PROCESSOR, now=now, rejection_reason="User not found",
        )
        await db.commit()
        return "rejected" if moved else None

    display_name, email = user.display_name, user.email
    premium = user.has_active_premium(now)

    approved = False
    if premium:
        approved = await _transition(
            db, cashout_id, "pending", "approved", processed_by=SYSTEM_PROCESSOR, now=now,
        )
        if not approved:
            # Another delivery or an admin already handled it.
            await db.rollback()
            return None
    alert = await _claim_operations_alert(db, cashout_id, now)
    await db.commit()
    if not approved and not alert:
        return None

    if alert:
        await _notify(notifier, None, "cashout_requested", {
            "display_name": display_name,
            "user_email": email,
            "amount": amount,
            "paypal_email": paypal_email,
            "is_premium": premium,
            "requested_at": created_at,
        })
    if approved:
        logger.info("Cashout %s auto-approved for premium user %s", cashout_id, user_id)
        await _notify(notifier, email, "cashout_approved", {
            "display_name": display_name,
            "amount": amount,
            "paypal_email": paypal_email,
        })
        return "approved"
    return "pending"


# ---------------------------------------------------------------------------
# Admin transitions
# ---------------------------------------------------------------------------


async def update_cashout_status(
    db: AsyncSession,
    redis: object,
    notifier: EmailService | None,
    caller_id: str,
    cashout_id: Any,
    status: Any,
    reason: str | None = None,
    now: datetime | None = None,
) -> Cashout:
    """Move a cashout to approved, rejected or completed, with its ledger effect."""
    if not await is_admin(db, caller_id):
        raise PermissionDenied("User must be an admin to update cashout status")
    if not cashout_id:
        raise InvalidArgument("Cashout ID must be specified")
    try:
        cashout_pk = int(cashout_id)
    except (TypeError, ValueError) as e:
        raise InvalidArgument("Cashout ID must be specified") from e
    if status not in ADMIN_TARGET_STATUSES:
        raise InvalidArgument("Status must be one of: approved, rejected, completed")

    cashout = await get_cashout(db, cashout_pk)
    if cashout is None:
        raise NotFound("Cashout request not found")
    validate_transition(cashout.status, status)
    if now is None:
        now = utcnow()

    current = cashout.status
    user_id, amount, paypal_email = cashout.user_id, cashout.amount, cashout.paypal_email
    rejection_reason = reason if status == "rejected" else None

    ledger = BalanceLedger(db, redis)
    try:
        moved = await _transition(
            db, cashout.id, current, status,
            processed_by=caller_id, now=now, rejection_reason=rejection_reason,
        )
        if not moved:
            raise FailedPrecondition("Cashout status changed concurrently")
        if status == "completed":
            await ledger.debit(
                user_id, amount, TransactionType.CASHOUT.value, f"Cashout to PayPal ({paypal_email})",
            )
        elif status == "rejected":
            await ledger.release(user_id, amount)
    except Exception:
        await ledger.rollback()
        raise
    await ledger.commit()
    logger.info("Cashout %s: %s -> %s by %s", cashout_id, current, status, caller_id)

    user = await get_user(db, user_id)
    if user is not None:
        context: dict[str, Any] = {"display_name": user.display_name, "amount": amount}
        if status == "rejected":
            context["reason"] = rejection_reason
        else:
            context["paypal_email"] = paypal_email
        if status == "completed":
            context["completed_at"] = now
        await _notify(notifier, user.email, f"cashout_{status}", context)
    else:
        logger.warning("Cashout %s user %s missing, skipping notification", cashout_id, user_id)

    refreshed = await get_cashout(db, cashout_pk)
    return refreshed if refreshed is not None else cashout
