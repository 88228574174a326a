"""Transactional outbox for change events.

Workflows stage each change as an ``outbox_events`` row inside the same
transaction as the write it describes. After commit the staged rows are
published to their streams and marked; rows a failed XADD left behind are
re-published by the relay job, so no committed change goes unannounced.
Consumers are idempotent, so a row published twice is harmless.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

from sqlalchemy import inspect, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.config import get_settings
from steprewards.db.models import OutboxEvent
from steprewards.db.types import utcnow
from steprewards.triggers.events import DocumentChange, publish_change

logger = logging.getLogger(__name__)

_STAGED_KEY = "steprewards.outbox"


def stage_change(db: AsyncSession, stream: str, change: DocumentChange) -> OutboxEvent:
    """Add an outbox row for ``change`` to the session's current transaction."""
    event = OutboxEvent(
        stream=stream,
        doc_id=change.doc_id,
        payload=change.to_message()["data"],
        created_at=utcnow(),
    )
    db.add(event)
    db.info.setdefault(_STAGED_KEY, []).append(event)
    return event


def discard_staged(db: AsyncSession) -> None:
    db.info.pop(_STAGED_KEY, None)


async def flush_staged(db: AsyncSession, redis: object) -> int:
    """Publish the rows staged in this session and committed since. Returns count published."""
    staged: list[OutboxEvent] = db.info.pop(_STAGED_KEY, [])
    # Rows from a rolled-back transaction are transient again.
    committed = [event for event in staged if inspect(event).persistent]
    if redis is None or not committed:
        return 0
    return await _publish(db, redis, committed)


async def relay_pending(db: AsyncSession, redis: object, now: datetime | None = None) -> int:
    """Publish rows left unpublished, oldest first. Returns count published.

    Rows younger than the relay delay are left to their own post-commit publish.
    """
    if redis is None:
        return 0
    settings = get_settings()
    if now is None:
        now = utcnow()
    cutoff = now - timedelta(seconds=settings.outbox_relay_delay_seconds)
    result = await db.execute(
        select(OutboxEvent)
        .where(OutboxEvent.published_at.is_(None), OutboxEvent.created_at <= cutoff)
        .order_by(OutboxEvent.id)
        .limit(settings.outbox_relay_batch_size)
        .with_for_update(skip_locked=True)
    )
    events = list(result.scalars().all())
    if not events:
        await db.rollback()
        return 0

    published = await _publish(db, redis, events)
    if published == 0:
        await db.rollback()
    if published < len(events):
        logger.warning("Outbox relay published %d of %d pending events", published, len(events))
    else:
        logger.info("Outbox relay published %d events", published)
    return published


async def _publish(db: AsyncSession, redis: object, events: list[OutboxEvent]) -> int:
    maxlen = get_settings().trigger_stream_maxlen
    published_ids: list[int] = []
    for event in sorted(events, key=lambda e: e.id):
        change = DocumentChange.from_message(json.loads(event.payload))
        # Stop at the first failure so a stream never sees events out of order.
        if not await publish_change(redis, event.stream, change, maxlen):
            break
        published_ids.append(event.id)

    if published_ids:
        try:
            await db.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id.in_(published_ids))
                .values(published_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except Exception:
            # Unmarked rows are published again by the relay.
            logger.warning("Failed to mark %d outbox events published", len(published_ids), exc_info=True)
            await db.rollback()
    return len(published_ids)
