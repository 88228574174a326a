"""Standalone runner for the trigger consumer.

Reads document change events from Redis Streams and dispatches each to its
workflow (step validation, referral completion, account bootstrap, cashout
review). Every message is acknowledged after one attempt; handlers are
idempotent and log their own failures.

Usage: python -m steprewards.workers.trigger_runner
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
from typing import Any

import redis.asyncio as aioredis

from steprewards.config import get_settings
from steprewards.database import close_db, get_session_factory, init_db
from steprewards.middleware.logging import setup_logging
from steprewards.notifications.service import EmailService, get_email_service
from steprewards.triggers.dispatcher import TriggerDispatcher
from steprewards.triggers.events import STREAMS

logger = logging.getLogger(__name__)

_running = True


def decode_entry(raw_data: dict[str, Any]) -> dict[str, Any]:
    """Parse the JSON payload of a stream entry, falling back to its raw fields."""
    if "data" not in raw_data:
        return dict(raw_data)
    data_str = raw_data["data"]
    if isinstance(data_str, str):
        try:
            return json.loads(data_str)
        except json.JSONDecodeError:
            return dict(raw_data)
    return dict(raw_data)


async def consume(
    redis_client: aioredis.Redis,
    consumer_group: str,
    consumer_name: str,
    notifier: EmailService,
) -> None:
    """Main consumer loop: reads change events and runs their triggers."""
    streams = {s: ">" for s in STREAMS}
    session_factory = get_session_factory()

    while _running:
        try:
            events = await redis_client.xreadgroup(
                groupname=consumer_group,
                consumername=consumer_name,
                streams=streams,
                count=100,
                block=5000,
            )
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            await asyncio.sleep(1)
            continue

        if not events:
            continue

        for stream_name, messages in events:
            stream_str = stream_name if isinstance(stream_name, str) else stream_name.decode()

            for msg_id, raw_data in messages:
                try:
                    data = decode_entry(raw_data)
                    async with session_factory() as db:
                        dispatcher = TriggerDispatcher(db, redis_client, notifier)
                        await dispatcher.dispatch(stream_str, msg_id, data)
                except Exception:
                    logger.exception("Failed to process %s from %s", msg_id, stream_str)
                finally:
                    await redis_client.xack(stream_str, consumer_group, msg_id)


async def main() -> None:
    """Run the trigger consumer."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )

    # Create consumer groups (idempotent)
    for stream in STREAMS:
        try:
            await redis_client.xgroup_create(stream, settings.trigger_consumer_group, id="0", mkstream=True)
            logger.info("Created consumer group %s for %s", settings.trigger_consumer_group, stream)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    loop = asyncio.get_running_loop()

    def _stop() -> None:
        global _running  # noqa: PLW0603
        _running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _stop)

    logger.info("Starting trigger consumer (consumer=%s)", settings.trigger_consumer_name)

    try:
        await consume(
            redis_client,
            settings.trigger_consumer_group,
            settings.trigger_consumer_name,
            get_email_service(),
        )
    finally:
        await redis_client.aclose()
        await close_db()
        logger.info("Trigger consumer stopped")


if __name__ == "__main__":
    asyncio.run(main())
