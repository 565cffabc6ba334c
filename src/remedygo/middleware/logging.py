"""Structured logging configuration with structlog."""

import logging

import structlog

from remedygo.config import Settings

# Log every statement the offline queue and the row store run below WARNING.
_STATEMENT_LOGGERS = ("aiosqlite", "sqlalchemy.engine")


def deployment_context(settings: Settings) -> structlog.types.Processor:
    """Stamp every event with the environment and version it came from.

    API and device logs end up in the same sink; these keys tell them apart.
    """

    def add_deployment(
        logger: object, method_name: str, event_dict: structlog.types.EventDict
    ) -> structlog.types.EventDict:
        event_dict.setdefault("environment", settings.environment)
        event_dict.setdefault("version", settings.app_version)
        return event_dict

    return add_deployment


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON or console output.

    Called by the API app and by ``EngagementClient.from_settings``.
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            deployment_context(settings),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)
    for name in _STATEMENT_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
