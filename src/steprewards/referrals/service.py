"""Account bootstrap and the referral program."""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.config import get_settings
from steprewards.db.models import ZERO, Referral, User
from steprewards.db.types import utcnow
from steprewards.errors import NotFound
from steprewards.ledger.service import BalanceLedger, TransactionType
from steprewards.triggers.events import DocumentChange, IdentityCreated, UserLedgerSnapshot

logger = logging.getLogger(__name__)

REFERRAL_CODE_LENGTH = 8


def generate_referral_code(uid: str) -> str:
    """Stable 8-char code: leading hex digits of MD5(uid), uppercased."""
    return hashlib.md5(uid.encode()).hexdigest()[:REFERRAL_CODE_LENGTH].upper()  # noqa: S324


async def resolve_referral_code(db: AsyncSession, code: str) -> User | None:
    """Find the user owning a referral code (case-insensitive)."""
    result = await db.execute(select(User).where(User.referral_code == code.strip().upper()))
    return result.scalar_one_or_none()


async def create_user_record(
    db: AsyncSession,
    identity: IdentityCreated,
    now: datetime | None = None,
) -> bool:
    """Create the rewards account for a new identity.

    Replays for an existing uid are no-ops. Returns True when created.
    """
    if now is None:
        now = utcnow()
    if await db.get(User, identity.uid) is not None:
        logger.info("User record already exists: %s", identity.uid)
        return False

    referrer_id: str | None = None
    if identity.referral_code:
        referrer = await resolve_referral_code(db, identity.referral_code)
        if referrer is None:
            logger.warning("Unknown referral code %r for %s", identity.referral_code, identity.uid)
        elif referrer.id == identity.uid:
            logger.warning("Ignoring self-referral for %s", identity.uid)
        else:
            referrer_id = referrer.id

    db.add(User(
        id=identity.uid,
        email=identity.email,
        display_name=identity.display_name,
        photo_url=identity.photo_url,
        is_premium=False,
        premium_expiry=None,
        total_earnings=ZERO,
        pending_cashout=ZERO,
        available_balance=ZERO,
        current_streak=0,
        lifetime_steps=0,
        referral_code=generate_referral_code(identity.uid),
        referred_by=referrer_id,
        has_completed_onboarding=False,
        created_at=now,
        last_active=now,
    ))
    if referrer_id is not None:
        db.add(Referral(referrer_id=referrer_id, referee_id=identity.uid, status="pending", created_at=now))

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("User record for %s created concurrently", identity.uid)
        return False

    logger.info("Created user record %s (referred_by=%s)", identity.uid, referrer_id)
    return True


async def check_referral_completion(
    db: AsyncSession,
    redis: object,
    change: DocumentChange,
    now: datetime | None = None,
) -> bool:
    """Pay the referrer once the referee's lifetime earnings cross the threshold.

    Returns True when this delivery completed the referral.
    """
    if change.before is None or change.after is None:
        return False
    before = UserLedgerSnapshot.model_validate(change.before)
    after = UserLedgerSnapshot.model_validate(change.after)
    settings = get_settings()
    threshold = settings.referral_completion_threshold

    if not after.referred_by:
        return False
    if not (before.total_earnings < threshold <= after.total_earnings):
        return False

    if now is None:
        now = utcnow()
    claimed = await db.execute(
        update(Referral)
        .where(
            Referral.referee_id == change.doc_id,
            Referral.referrer_id == after.referred_by,
            Referral.status == "pending",
        )
        .values(status="completed", completed_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        await db.rollback()
        return False

    ledger = BalanceLedger(db, redis)
    try:
        await ledger.credit(
            after.referred_by,
            settings.referral_bonus_amount,
            TransactionType.REFERRAL_BONUS.value,
            f"Referral bonus for {after.display_name or 'new user'}",
        )
    except NotFound:
        logger.error("Referrer %s not found for referee %s", after.referred_by, change.doc_id)
        await ledger.rollback()
        return False
    await ledger.commit()
    logger.info("Referral completed: referrer=%s referee=%s", after.referred_by, change.doc_id)
    return True


async def get_referred_users(db: AsyncSession, user_id: str) -> list[Referral]:
    """Referrals made by ``user_id``, oldest first."""
    result = await db.execute(
        select(Referral)
        .where(Referral.referrer_id == user_id)
        .order_by(Referral.created_at.asc(), Referral.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
