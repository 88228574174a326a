"""Scheduler arq worker: daily reset, leaderboards, tournament end sweep and outbox relay.

Import path for arq CLI: arq steprewards.workers.scheduler.SchedulerWorkerSettings

Cron times are evaluated in the reference timezone. Every job catches and
logs its own failure; the next tick runs normally.
"""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from steprewards.config import get_settings
from steprewards.database import close_db, get_session_factory, init_db
from steprewards.steps.streak_service import daily_reset
from steprewards.tournaments.service import end_tournaments, refresh_leaderboards
from steprewards.triggers.outbox import relay_pending

logger = logging.getLogger(__name__)


async def scheduler_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["events"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Scheduler worker started")


async def scheduler_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("events")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Scheduler worker shut down")


async def daily_midnight_reset(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: streaks and today's step records, 00:00 reference time."""
    async with get_session_factory()() as db:
        try:
            return await daily_reset(db)
        except Exception:
            logger.exception("Error processing daily reset")
            await db.rollback()
            return 0


async def update_tournament_leaderboards(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: hourly leaderboard snapshots."""
    async with get_session_factory()() as db:
        try:
            return await refresh_leaderboards(db)
        except Exception:
            logger.exception("Error updating tournament leaderboards")
            await db.rollback()
            return 0


async def end_finished_tournaments(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: hourly end sweep with prize distribution."""
    async with get_session_factory()() as db:
        try:
            return await end_tournaments(db, ctx.get("events"))
        except Exception:
            logger.exception("Error ending tournaments")
            await db.rollback()
            return 0


async def relay_outbox_events(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: every minute, publish change events a failed XADD left behind."""
    async with get_session_factory()() as db:
        try:
            return await relay_pending(db, ctx.get("events"))
        except Exception:
            logger.exception("Error relaying outbox events")
            await db.rollback()
            return 0


class SchedulerWorkerSettings:
    """arq worker settings for the scheduled jobs."""

    functions = [daily_midnight_reset, update_tournament_leaderboards, end_finished_tournaments, relay_outbox_events]
    cron_jobs = [
        cron(daily_midnight_reset, hour=0, minute=0),
        cron(update_tournament_leaderboards, minute=0),
        cron(end_finished_tournaments, minute=5),
        cron(relay_outbox_events, second=30),
    ]
    timezone = ZoneInfo(get_settings().reference_timezone)
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    on_startup = scheduler_startup
    on_shutdown = scheduler_shutdown
    max_jobs = 4
    job_timeout = 600
    allow_abort_jobs = True
