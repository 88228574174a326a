"""ORM models for the ledger store.

One table per record type. Balance columns on ``users`` are only ever
changed through SQL increment expressions issued by the balance ledger.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from steprewards.db.base import Base
from steprewards.db.types import BigIntPK, Money, UTCDateTime, utcnow

ZERO = Decimal("0.00")

# StepRecord has a column named ``date``.
DayKey = date


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """A rewards account, keyed by the identity provider's uid."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="ck_users_available_balance_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    display_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    photo_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    premium_expiry: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    total_earnings: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    pending_cashout: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    available_balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)

    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_streak_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    lifetime_steps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    referral_code: Mapped[str] = mapped_column(String(8), nullable=False, unique=True)
    referred_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    has_completed_onboarding: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_active: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def has_active_premium(self, now: datetime) -> bool:
        """Premium flag, honouring an expiry when one is set."""
        if not self.is_premium:
            return False
        return self.premium_expiry is None or self.premium_expiry > now


class Admin(Base):
    """Admin allow-list. Presence of a row grants the admin role."""

    __tablename__ = "admins"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class Transaction(Base):
    """Append-only audit record; one per reconciled balance mutation."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tournament_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


class StepRecord(Base):
    """Daily step count for one user. ``is_validated`` is terminal."""

    __tablename__ = "steps"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_steps_user_date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    date: Mapped[DayKey] = mapped_column(Date, nullable=False)
    step_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    earnings: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    multiplier: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False, default=Decimal("1.00"))
    is_validated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe document image for step write events."""
        return {
            "user_id": self.user_id,
            "date": self.date.isoformat(),
            "step_count": self.step_count,
            "earnings": str(self.earnings),
            "multiplier": str(self.multiplier),
            "is_validated": self.is_validated,
        }


# ---------------------------------------------------------------------------
# Cashouts
# ---------------------------------------------------------------------------


class Cashout(Base):
    """A request to pay out reserved balance; status is a state machine."""

    __tablename__ = "cashouts"
    __table_args__ = (
        Index("idx_cashouts_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    paypal_email: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    operations_notified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Tournaments
# ---------------------------------------------------------------------------


class Tournament(Base):
    """Time-boxed step-count competition with a rank -> prize schedule."""

    __tablename__ = "tournaments"
    __table_args__ = (
        Index("idx_tournaments_active_end", "is_active", "end_date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    prize_pool: Mapped[Decimal] = mapped_column(Money, nullable=False)
    # {"1": "5.00", "2": "2.00"}
    prizes: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)
    participants_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    top_participants: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_premium_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    winners: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class TournamentParticipant(Base):
    """One row per (tournament, user). ``id`` preserves insertion order."""

    __tablename__ = "tournament_participants"
    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="uq_participants_tournament_user"),
        Index("idx_participants_tournament_steps", "tournament_id", "step_count"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    photo_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    step_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class PrizeDistribution(Base):
    """One-time lock for a tournament's prize payout."""

    __tablename__ = "prize_distributions"

    tournament_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tournaments.id", ondelete="CASCADE"), primary_key=True,
    )
    winners_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_awarded: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    distributed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------


class Referral(Base):
    """Referrer -> referee link; pending until the referee's earnings cross the threshold."""

    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referee_id", name="uq_referrals_referee"),
        Index("idx_referrals_referrer", "referrer_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    referrer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    referee_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------


class OutboxEvent(Base):
    """A change event written in the same transaction as the change itself.

    Rows are published to their stream right after commit; anything left
    unpublished is picked up by the relay job.
    """

    __tablename__ = "outbox_events"
    __table_args__ = (Index("idx_outbox_unpublished", "published_at", "id"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    stream: Mapped[str] = mapped_column(String(64), nullable=False)
    doc_id: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    published_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
