"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from remedygo.config import Settings
from remedygo.middleware.request_id import REQUEST_ID_HEADER


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the web app and the native shell (capacitor://) to call the API."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
