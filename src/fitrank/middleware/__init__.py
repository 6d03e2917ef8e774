"""Middleware registration."""

from fastapi import FastAPI

from fitrank.config import Settings
from fitrank.middleware.error_handler import setup_error_handlers
from fitrank.middleware.logging import setup_logging
from fitrank.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, error handlers and request tagging."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
