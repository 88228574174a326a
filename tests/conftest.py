"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

os.environ["SR_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SR_JWT_ALGORITHM"] = "HS256"
os.environ["SR_JWT_SECRET"] = "test-secret-with-enough-bytes-for-hs256"
os.environ["SR_JWT_ISSUER"] = ""
os.environ["SR_LOG_FORMAT"] = "console"

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from steprewards.config import get_settings

get_settings.cache_clear()

from steprewards.auth.jwt import reset_keys  # noqa: E402
from steprewards.db.base import Base  # noqa: E402
from steprewards.db.models import Admin, User  # noqa: E402
from steprewards.dependencies import get_db, get_notifier, get_redis_dep  # noqa: E402
from steprewards.referrals.service import generate_referral_code  # noqa: E402
from steprewards.triggers.events import DocumentChange  # noqa: E402
from steprewards.workers.trigger_runner import decode_entry  # noqa: E402

reset_keys()


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def mock_notifier() -> MagicMock:
    """Email notifier that records sends instead of delivering them."""
    notifier = MagicMock()
    notifier.send_template = AsyncMock(return_value=True)
    notifier.notify_operations = AsyncMock(return_value=True)
    notifier.send_email = AsyncMock(return_value=True)
    return notifier


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, mock_notifier: MagicMock) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client sharing the test's database session; events disabled."""
    from steprewards.main import create_app

    app = create_app()

    async def _db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def _redis() -> AsyncGenerator[object, None]:
        yield None

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_redis_dep] = _redis
    app.dependency_overrides[get_notifier] = lambda: mock_notifier

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def make_token(uid: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Sign a token the way the identity provider would (HS256 in tests)."""
    settings = get_settings()
    payload = {"sub": uid, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def auth_headers(uid: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(uid)}"}


async def create_user(
    db: AsyncSession,
    uid: str,
    *,
    balance: str = "0.00",
    total_earnings: str | None = None,
    pending: str = "0.00",
    is_premium: bool = False,
    display_name: str | None = None,
    email: str | None = None,
    referred_by: str | None = None,
    current_streak: int = 0,
) -> User:
    """Insert a user row directly."""
    user = User(
        id=uid,
        email=email if email is not None else f"{uid}@example.com",
        display_name=display_name if display_name is not None else uid.title(),
        photo_url="",
        is_premium=is_premium,
        total_earnings=Decimal(total_earnings if total_earnings is not None else balance),
        pending_cashout=Decimal(pending),
        available_balance=Decimal(balance),
        current_streak=current_streak,
        lifetime_steps=0,
        referral_code=generate_referral_code(uid),
        referred_by=referred_by,
    )
    db.add(user)
    await db.commit()
    return user


async def make_admin(db: AsyncSession, uid: str) -> None:
    db.add(Admin(user_id=uid))
    await db.commit()


def published(redis: AsyncMock, stream: str) -> list[DocumentChange]:
    """Document changes appended to ``stream`` through a mocked Redis client."""
    return [
        DocumentChange.from_message(decode_entry(c.args[1]))
        for c in redis.xadd.await_args_list
        if c.args[0] == stream
    ]
