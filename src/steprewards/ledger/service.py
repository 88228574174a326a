"""Balance ledger: every balance mutation plus its transaction record, atomically.

Balance columns are changed with SQL increment expressions only
(``SET col = col + :delta``), never read-modify-write, so concurrent
credits from different workflows commute. Each staged mutation lives in the
caller's session transaction together with a ``users:updated`` outbox row;
``BalanceLedger.commit()`` commits the whole batch (including any other rows
the workflow changed) and then publishes the staged events, so downstream
checks (referral completion) hook off every earnings change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from sqlalchemy import ColumnElement, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.config import get_settings
from steprewards.db.models import Transaction, User
from steprewards.db.types import utcnow
from steprewards.errors import FailedPrecondition, InvalidArgument, NotFound
from steprewards.triggers.events import USERS_UPDATED, DocumentChange
from steprewards.triggers.outbox import discard_staged, flush_staged, stage_change

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class TransactionType(str, Enum):
    """Ledger-originated transaction types. Clients may not use these for bonuses."""

    STEPS_EARNINGS = "steps_earnings"
    TOURNAMENT_PRIZE = "tournament_prize"
    REFERRAL_BONUS = "referral_bonus"
    CASHOUT = "cashout"


RESERVED_TYPES = frozenset(t.value for t in TransactionType)


def to_money(value: Any) -> Decimal:
    """Round half-up to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: Any, cap: Decimal | None = None, message: str = "Amount must be a positive number") -> Decimal:
    """Validate a caller-supplied amount and round it to cents.

    The cap is applied before rounding, so any finite positive amount above it
    yields the cap. Non-numeric, non-finite and non-positive values raise
    ``InvalidArgument``.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise InvalidArgument(message)
    try:
        exact = Decimal(str(value))
        if not exact.is_finite() or exact <= 0:
            raise InvalidArgument(message)
        if cap is not None:
            exact = min(exact, cap)
        amount = exact.quantize(CENT, rounding=ROUND_HALF_UP)
    except ArithmeticError as e:
        raise InvalidArgument(message) from e
    if amount <= 0:
        raise InvalidArgument(message)
    return amount


@dataclass(frozen=True)
class BalanceChange:
    """Result of one ledger mutation: the row's values after it, and the deltas applied."""

    user_id: str
    transaction_id: int | None
    available_balance: Decimal
    total_earnings: Decimal
    pending_cashout: Decimal
    available_delta: Decimal
    earnings_delta: Decimal
    pending_delta: Decimal
    referred_by: str | None
    display_name: str

    def as_document_change(self) -> DocumentChange:
        """Before/after images of the user's ledger fields."""
        after = {
            "available_balance": str(self.available_balance),
            "total_earnings": str(self.total_earnings),
            "pending_cashout": str(self.pending_cashout),
            "referred_by": self.referred_by,
            "display_name": self.display_name,
        }
        before = {
            **after,
            "available_balance": str(self.available_balance - self.available_delta),
            "total_earnings": str(self.total_earnings - self.earnings_delta),
            "pending_cashout": str(self.pending_cashout - self.pending_delta),
        }
        return DocumentChange(doc_id=self.user_id, before=before, after=after)


class BalanceLedger:
    """Stages balance mutations in ``db`` and commits them as one batch."""

    def __init__(self, db: AsyncSession, redis: object = None) -> None:
        self.db = db
        self.redis = redis
        self._changes: list[BalanceChange] = []

    async def credit(
        self,
        user_id: str,
        amount: Decimal,
        tx_type: str,
        description: str,
        *,
        tournament_id: int | None = None,
        counts_toward_earnings: bool = True,
    ) -> BalanceChange:
        """Increase available balance (and lifetime earnings) and record the transaction."""
        amount = parse_amount(amount)
        earnings = amount if counts_toward_earnings else ZERO
        row = await self._apply(user_id, available=amount, earnings=earnings, pending=ZERO)
        if row is None:
            raise NotFound(f"User {user_id} not found")
        tx = await self._record(user_id, amount, tx_type, description, tournament_id)
        return self._stage(user_id, tx.id, row, available=amount, earnings=earnings, pending=ZERO)

    async def debit(
        self,
        user_id: str,
        amount: Decimal,
        tx_type: str,
        description: str,
    ) -> BalanceChange:
        """Settle reserved funds: decrease pending cashout and record a negative transaction.

        Available balance is untouched; it was decreased when the funds were
        reserved.
        """
        amount = parse_amount(amount)
        row = await self._apply(
            user_id, available=ZERO, earnings=ZERO, pending=-amount,
            guard=User.pending_cashout >= amount,
        )
        if row is None:
            await self._raise_missing_or_short(user_id, "Insufficient pending cashout balance")
        tx = await self._record(user_id, -amount, tx_type, description, None)
        return self._stage(user_id, tx.id, row, available=ZERO, earnings=ZERO, pending=-amount)

    async def reserve(self, user_id: str, amount: Decimal) -> BalanceChange:
        """Move funds from available balance into pending cashout."""
        amount = parse_amount(amount)
        row = await self._apply(
            user_id, available=-amount, earnings=ZERO, pending=amount,
            guard=User.available_balance >= amount,
        )
        if row is None:
            await self._raise_missing_or_short(user_id, "Insufficient available balance")
        return self._stage(user_id, None, row, available=-amount, earnings=ZERO, pending=amount)

    async def release(self, user_id: str, amount: Decimal) -> BalanceChange:
        """Return reserved funds from pending cashout to available balance."""
        amount = parse_amount(amount)
        row = await self._apply(
            user_id, available=amount, earnings=ZERO, pending=-amount,
            guard=User.pending_cashout >= amount,
        )
        if row is None:
            await self._raise_missing_or_short(user_id, "Insufficient pending cashout balance")
        return self._stage(user_id, None, row, available=amount, earnings=ZERO, pending=-amount)

    async def commit(self) -> list[BalanceChange]:
        """Commit the session batch, then publish every change staged in it."""
        await self.db.commit()
        changes, self._changes = self._changes, []
        await flush_staged(self.db, self.redis)
        return changes

    async def rollback(self) -> None:
        """Discard the session batch and every staged change."""
        self._changes = []
        await self.db.rollback()
        discard_staged(self.db)

    # --- internals ---

    async def _apply(
        self,
        user_id: str,
        *,
        available: Decimal,
        earnings: Decimal,
        pending: Decimal,
        guard: ColumnElement[bool] | None = None,
    ) -> Any:
        criteria = [User.id == user_id]
        if guard is not None:
            criteria.append(guard)
        stmt = (
            update(User)
            .where(*criteria)
            .values(
                available_balance=User.available_balance + available,
                total_earnings=User.total_earnings + earnings,
                pending_cashout=User.pending_cashout + pending,
                last_active=utcnow(),
            )
            .returning(
                User.available_balance,
                User.total_earnings,
                User.pending_cashout,
                User.referred_by,
                User.display_name,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.one_or_none()

    async def _record(
        self,
        user_id: str,
        amount: Decimal,
        tx_type: str,
        description: str,
        tournament_id: int | None,
    ) -> Transaction:
        tx = Transaction(
            user_id=user_id,
            amount=amount,
            type=tx_type,
            description=description,
            tournament_id=tournament_id,
            created_at=utcnow(),
        )
        self.db.add(tx)
        await self.db.flush()
        return tx

    def _stage(
        self,
        user_id: str,
        transaction_id: int | None,
        row: Any,
        *,
        available: Decimal,
        earnings: Decimal,
        pending: Decimal,
    ) -> BalanceChange:
        change = BalanceChange(
            user_id=user_id,
            transaction_id=transaction_id,
            available_balance=to_money(row.available_balance),
            total_earnings=to_money(row.total_earnings),
            pending_cashout=to_money(row.pending_cashout),
            available_delta=available,
            earnings_delta=earnings,
            pending_delta=pending,
            referred_by=row.referred_by,
            display_name=row.display_name or "",
        )
        self._changes.append(change)
        stage_change(self.db, USERS_UPDATED, change.as_document_change())
        return change

    async def _raise_missing_or_short(self, user_id: str, message: str) -> None:
        exists = await self.db.execute(select(User.id).where(User.id == user_id))
        if exists.scalar_one_or_none() is None:
            raise NotFound(f"User {user_id} not found")
        raise FailedPrecondition(message)


# ---------------------------------------------------------------------------
# Callable operations
# ---------------------------------------------------------------------------


async def get_earnings_history(db: AsyncSession, user_id: str, limit: int | None = None) -> list[Transaction]:
    """Most recent transactions first."""
    if limit is None:
        limit = get_settings().earnings_history_limit
    result = await db.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def add_bonus(
    db: AsyncSession,
    redis: object,
    user_id: str,
    amount: Any,
    bonus_type: Any,
    description: str | None = None,
) -> Decimal:
    """Credit a client-reported bonus (ads and similar), capped per call.

    Returns the amount actually credited.
    """
    if isinstance(amount, str):
        raise InvalidArgument("Amount must be a positive number")
    credited = parse_amount(amount, cap=get_settings().max_bonus_amount)
    if not isinstance(bonus_type, str) or not bonus_type.strip():
        raise InvalidArgument("Bonus type must be specified")
    if bonus_type in RESERVED_TYPES:
        raise InvalidArgument(f"Bonus type '{bonus_type}' is reserved")

    ledger = BalanceLedger(db, redis)
    try:
        await ledger.credit(user_id, credited, bonus_type, description or "Bonus earnings")
    except Exception:
        await ledger.rollback()
        raise
    await ledger.commit()
    logger.info("Bonus credited: user=%s amount=%s type=%s", user_id, credited, bonus_type)
    return credited
