"""Trigger dispatcher: routes stream messages to their workflow handler."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from steprewards.cashouts.service import process_cashout_request
from steprewards.notifications.service import EmailService
from steprewards.referrals.service import check_referral_completion, create_user_record
from steprewards.steps.service import validate_steps
from steprewards.triggers.events import (
    CASHOUTS_CREATED,
    STEPS_WRITTEN,
    USERS_CREATED,
    USERS_UPDATED,
    DocumentChange,
    IdentityCreated,
)

logger = logging.getLogger(__name__)


class TriggerDispatcher:
    """Runs the workflow matching each stream.

    Handlers are idempotent, so every delivery is treated as final: any
    failure is logged and rolled back and the message is reported handled.
    """

    def __init__(self, db: AsyncSession, redis: object, notifier: EmailService | None) -> None:
        self.db = db
        self.redis = redis
        self.notifier = notifier

    async def dispatch(self, stream: str, event_id: str, data: dict[str, Any]) -> bool:
        """Handle one message. Returns True when the handler ran to completion."""
        try:
            result = await self._route(stream, data)
        except Exception:
            logger.exception("Trigger failed (stream=%s, event=%s)", stream, event_id)
            await self.db.rollback()
            return False
        logger.debug("Trigger handled (stream=%s, event=%s, result=%s)", stream, event_id, result)
        return True

    async def _route(self, stream: str, data: dict[str, Any]) -> object:
        if stream == USERS_CREATED:
            return await create_user_record(self.db, IdentityCreated.model_validate(data))

        change = DocumentChange.from_message(data)
        if stream == STEPS_WRITTEN:
            return await validate_steps(self.db, self.redis, change)
        if stream == USERS_UPDATED:
            return await check_referral_completion(self.db, self.redis, change)
        if stream == CASHOUTS_CREATED:
            return await process_cashout_request(self.db, self.notifier, change)

        logger.warning("No handler for stream %s", stream)
        return None
