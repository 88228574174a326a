"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from steprewards.database import get_session as _get_session
from steprewards.notifications.service import EmailService, get_email_service
from steprewards.redis_client import get_redis_or_none as _get_redis_or_none

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client (or None when events are disabled) as a FastAPI dependency."""
    yield _get_redis_or_none()


def get_notifier() -> EmailService:
    """Email notifier (overridden in tests)."""
    return get_email_service()
