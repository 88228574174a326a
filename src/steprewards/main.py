"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from steprewards.cashouts.router import router as cashouts_router
from steprewards.config import get_settings
from steprewards.database import close_db, init_db
from steprewards.health.router import router as health_router
from steprewards.ledger.router import router as earnings_router
from steprewards.middleware import setup_middleware
from steprewards.redis_client import close_redis, init_redis
from steprewards.referrals.router import router as referrals_router
from steprewards.steps.router import router as steps_router
from steprewards.tournaments.router import router as tournaments_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Step Rewards API",
        description="Backend API for Step Rewards: step earnings, cashouts, tournaments and referrals",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(earnings_router)
    app.include_router(steps_router)
    app.include_router(cashouts_router)
    app.include_router(tournaments_router)
    app.include_router(referrals_router)

    return app


app = create_app()
