"""Tournament engine: creation, joining, progress, leaderboards and prize payout."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.clock import day_start, reference_today
from steprewards.config import get_settings
from steprewards.db.models import PrizeDistribution, StepRecord, Tournament, TournamentParticipant
from steprewards.db.types import utcnow
from steprewards.errors import FailedPrecondition, InvalidArgument, NotFound, PermissionDenied
from steprewards.ledger.service import ZERO, BalanceLedger, TransactionType, parse_amount
from steprewards.tournaments.ranking import leaderboard_entry, prize_for_rank, rank_participants
from steprewards.users.service import get_user

logger = logging.getLogger(__name__)

ALREADY_JOINED = "Already joined this tournament"
JOINED = "Successfully joined tournament"


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def _parse_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as e:
            raise InvalidArgument(f"Invalid {field}") from e
    else:
        raise InvalidArgument(f"Invalid {field}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_amount(value: Any, field: str) -> Decimal:
    return parse_amount(value, message=f"Invalid {field}")


def validate_prizes(prizes: Any) -> dict[str, str]:
    """Normalize a rank -> amount schedule. Ranks are positive ints, amounts positive."""
    if prizes is None:
        return {}
    if not isinstance(prizes, dict):
        raise InvalidArgument("Prizes must map ranks to amounts")
    normalized: dict[str, str] = {}
    for key, value in prizes.items():
        rank_text = str(key)
        if not rank_text.isdigit() or int(rank_text) < 1:
            raise InvalidArgument(f"Invalid prize rank: {key}")
        normalized[str(int(rank_text))] = str(_parse_amount(value, "Prize amount"))
    return normalized


async def create_tournament(
    db: AsyncSession,
    *,
    name: Any,
    start_date: Any,
    end_date: Any,
    prize_pool: Any,
    description: str | None = None,
    prizes: Any = None,
    is_active: bool | None = None,
    is_premium_only: bool | None = None,
) -> Tournament:
    """Insert a new tournament. Caller authorization is checked by the transport."""
    if not name or not start_date or not end_date or not prize_pool:
        raise InvalidArgument("Missing required tournament fields")
    if not isinstance(name, str):
        raise InvalidArgument("Invalid name")

    start = _parse_datetime(start_date, "start date")
    end = _parse_datetime(end_date, "end date")
    if end <= start:
        raise InvalidArgument("End date must be after start date")

    now = utcnow()
    tournament = Tournament(
        name=name,
        description=description or "",
        start_date=start,
        end_date=end,
        prize_pool=_parse_amount(prize_pool, "Prize pool"),
        prizes=validate_prizes(prizes),
        participants_count=0,
        top_participants=[],
        is_active=True if is_active is None else bool(is_active),
        is_premium_only=bool(is_premium_only),
        created_at=now,
        updated_at=now,
    )
    db.add(tournament)
    await db.commit()
    logger.info("Tournament created: id=%s name=%s", tournament.id, name)
    return tournament


# ---------------------------------------------------------------------------
# Participation
# ---------------------------------------------------------------------------


async def join_tournament(
    db: AsyncSession,
    user_id: str,
    tournament_id: int,
    now: datetime | None = None,
) -> str:
    """Add the caller to a tournament. Joining twice is a successful no-op."""
    if now is None:
        now = utcnow()

    result = await db.execute(
        select(Tournament)
        .where(Tournament.id == tournament_id)
        .execution_options(populate_existing=True)
    )
    tournament = result.scalar_one_or_none()
    if tournament is None:
        raise NotFound("Tournament not found")
    if not tournament.is_active:
        raise FailedPrecondition("Tournament is not active")
    if tournament.start_date > now:
        raise FailedPrecondition("Tournament has not started yet")
    if tournament.end_date < now:
        raise FailedPrecondition("Tournament has already ended")

    user = await get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    if tournament.is_premium_only and not user.has_active_premium(now):
        raise PermissionDenied("This tournament is for premium users only")

    if await _participant_id(db, tournament_id, user_id) is not None:
        return ALREADY_JOINED

    today_steps = await db.scalar(
        select(StepRecord.step_count).where(
            StepRecord.user_id == user_id,
            StepRecord.date == reference_today(now),
        )
    )
    db.add(TournamentParticipant(
        tournament_id=tournament_id,
        user_id=user_id,
        display_name=user.display_name or "",
        photo_url=user.photo_url or "",
        step_count=today_steps or 0,
        created_at=now,
        updated_at=now,
    ))
    await _bump_participants_count(db, tournament_id, now)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent join inserted the row first.
        await db.rollback()
        return ALREADY_JOINED
    logger.info("User %s joined tournament %s", user_id, tournament_id)
    return JOINED


async def record_tournament_progress(
    db: AsyncSession,
    user_id: str,
    display_name: str,
    photo_url: str,
    step_count: int,
    now: datetime | None = None,
) -> int:
    """Raise the user's step count in every running tournament, joining where absent.

    A tournament is running when it is active and today's midnight in the
    reference timezone falls inside its window. Step counts only move up.
    Returns the number of tournaments touched.
    """
    if now is None:
        now = utcnow()
    today = day_start(reference_today(now))
    result = await db.execute(
        select(Tournament.id).where(
            Tournament.is_active.is_(True),
            Tournament.start_date <= today,
            Tournament.end_date >= today,
        )
    )
    tournament_ids = list(result.scalars().all())

    for tournament_id in tournament_ids:
        if await _raise_participant_steps(db, tournament_id, user_id, step_count, now):
            continue
        if await _participant_id(db, tournament_id, user_id) is not None:
            continue
        db.add(TournamentParticipant(
            tournament_id=tournament_id,
            user_id=user_id,
            display_name=display_name,
            photo_url=photo_url,
            step_count=step_count,
            created_at=now,
            updated_at=now,
        ))
        await _bump_participants_count(db, tournament_id, now)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            await _raise_participant_steps(db, tournament_id, user_id, step_count, now)

    await db.commit()
    return len(tournament_ids)


async def _participant_id(db: AsyncSession, tournament_id: int, user_id: str) -> int | None:
    return await db.scalar(
        select(TournamentParticipant.id).where(
            TournamentParticipant.tournament_id == tournament_id,
            TournamentParticipant.user_id == user_id,
        )
    )


async def _raise_participant_steps(
    db: AsyncSession, tournament_id: int, user_id: str, step_count: int, now: datetime,
) -> bool:
    result = await db.execute(
        update(TournamentParticipant)
        .where(
            TournamentParticipant.tournament_id == tournament_id,
            TournamentParticipant.user_id == user_id,
            TournamentParticipant.step_count < step_count,
        )
        .values(step_count=step_count, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def _bump_participants_count(db: AsyncSession, tournament_id: int, now: datetime) -> None:
    await db.execute(
        update(Tournament)
        .where(Tournament.id == tournament_id)
        .values(participants_count=Tournament.participants_count + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )


async def _ranked_participants(
    db: AsyncSession, tournament_id: int, limit: int | None = None,
) -> list[dict[str, Any]]:
    stmt = (
        select(TournamentParticipant)
        .where(TournamentParticipant.tournament_id == tournament_id)
        .order_by(TournamentParticipant.step_count.desc(), TournamentParticipant.id.asc())
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return rank_participants([
        {
            "id": p.id,
            "user_id": p.user_id,
            "display_name": p.display_name,
            "photo_url": p.photo_url,
            "step_count": p.step_count,
        }
        for p in result.scalars().all()
    ])


# ---------------------------------------------------------------------------
# Scheduled: leaderboard refresh
# ---------------------------------------------------------------------------


async def refresh_leaderboards(db: AsyncSession, now: datetime | None = None) -> int:
    """Snapshot the top participants of every running tournament.

    Returns number of tournaments updated.
    """
    if now is None:
        now = utcnow()
    size = get_settings().leaderboard_size

    result = await db.execute(
        select(Tournament.id).where(
            Tournament.is_active.is_(True),
            Tournament.start_date <= now,
            Tournament.end_date >= now,
        )
    )
    updated = 0
    for tournament_id in result.scalars().all():
        top = await _ranked_participants(db, tournament_id, limit=size)
        if not top:
            logger.info("No participants found for tournament %s", tournament_id)
            continue
        count = await db.scalar(
            select(func.count()).select_from(TournamentParticipant).where(
                TournamentParticipant.tournament_id == tournament_id,
            )
        )
        await db.execute(
            update(Tournament)
            .where(Tournament.id == tournament_id)
            .values(
                top_participants=[leaderboard_entry(p) for p in top],
                participants_count=count or 0,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        updated += 1

    await db.commit()
    logger.info("Updated %d tournament leaderboards", updated)
    return updated


# ---------------------------------------------------------------------------
# Scheduled: end sweep and prize distribution
# ---------------------------------------------------------------------------


async def end_tournaments(db: AsyncSession, redis: object = None, now: datetime | None = None) -> int:
    """Close tournaments whose end date fell inside the lookback window.

    Each tournament is finalized in its own batch; a failure is logged and
    the sweep moves on. Returns number of tournaments closed by this run.
    """
    if now is None:
        now = utcnow()
    lookback = timedelta(minutes=get_settings().tournament_end_lookback_minutes)

    result = await db.execute(
        select(Tournament.id, Tournament.name, Tournament.prizes).where(
            Tournament.is_active.is_(True),
            Tournament.end_date >= now - lookback,
            Tournament.end_date <= now,
        )
    )
    candidates = result.all()
    if not candidates:
        logger.info("No tournaments ending now")
        return 0

    closed = 0
    for tournament_id, name, prizes in candidates:
        try:
            if await finalize_tournament(db, redis, tournament_id, name, prizes or {}, now):
                closed += 1
        except Exception:
            logger.exception("Error ending tournament %s", tournament_id)
            await db.rollback()
    return closed


async def finalize_tournament(
    db: AsyncSession,
    redis: object,
    tournament_id: int,
    name: str,
    prizes: dict[str, Any],
    now: datetime,
) -> bool:
    """Deactivate one tournament and pay its prizes exactly once.

    The distribution lock row and the conditional ``is_active`` flip are
    written in the same batch as the prize credits; a replayed or concurrent
    sweep fails one of the two guards and skips. Returns False on skip.
    """
    ranked = await _ranked_participants(db, tournament_id)

    if not ranked:
        logger.info("No participants found for tournament %s", tournament_id)
        result = await db.execute(
            update(Tournament)
            .where(Tournament.id == tournament_id, Tournament.is_active.is_(True))
            .values(is_active=False, participants_count=0, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount > 0

    distributed = await db.scalar(
        select(PrizeDistribution.tournament_id).where(PrizeDistribution.tournament_id == tournament_id)
    )
    if distributed is not None:
        await db.rollback()
        logger.info("Prizes for tournament %s already distributed", tournament_id)
        return False

    lock = PrizeDistribution(tournament_id=tournament_id, distributed_at=now)
    db.add(lock)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.info("Prizes for tournament %s already distributed", tournament_id)
        return False

    claimed = await db.execute(
        update(Tournament)
        .where(Tournament.id == tournament_id, Tournament.is_active.is_(True))
        .values(is_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        await db.rollback()
        logger.info("Tournament %s already closed", tournament_id)
        return False

    ledger = BalanceLedger(db, redis)
    winners: list[dict[str, Any]] = []
    total = ZERO
    for participant in ranked:
        rank = participant["rank"]
        prize = prize_for_rank(prizes, rank)
        if prize is None:
            continue
        try:
            await ledger.credit(
                participant["user_id"],
                prize,
                TransactionType.TOURNAMENT_PRIZE.value,
                f"Prize for {name} (Rank: {rank})",
                tournament_id=tournament_id,
            )
        except NotFound:
            logger.warning(
                "Skipping prize for missing user %s in tournament %s", participant["user_id"], tournament_id,
            )
            continue
        winners.append({
            "user_id": participant["user_id"],
            "display_name": participant["display_name"],
            "rank": rank,
            "prize_amount": str(prize),
        })
        total += prize

    lock.winners_count = len(winners)
    lock.total_awarded = total
    size = get_settings().leaderboard_size
    await db.execute(
        update(Tournament)
        .where(Tournament.id == tournament_id)
        .values(
            top_participants=[leaderboard_entry(p) for p in ranked[:size]],
            winners=winners,
            participants_count=len(ranked),
            completed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await ledger.commit()
    logger.info("Ended tournament %s with %d winners (total %s)", tournament_id, len(winners), total)
    return True
