"""Middleware registration."""

from fastapi import FastAPI

from remedygo.config import Settings
from remedygo.middleware.cors import setup_cors
from remedygo.middleware.error_handler import setup_error_handlers
from remedygo.middleware.logging import setup_logging
from remedygo.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette executes middleware in reverse-add order (last added = outermost).
    CORS is added last so it also wraps error responses.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
