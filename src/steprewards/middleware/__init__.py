"""Middleware registration."""

from fastapi import FastAPI

from steprewards.config import Settings
from steprewards.middleware.error_handler import setup_error_handlers
from steprewards.middleware.logging import setup_logging
from steprewards.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and the request id middleware."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
