"""Logfire setup, service spans and user-scoped structured logging.

Modules log through ``logging.getLogger(__name__)``; once ``configure_logfire``
has run, records and their ``extra`` fields are exported as structured
attributes. Service entry points wrap their body in ``span(...)``.

    log_with_user_context(logger, "info", "Verification approved", user_id="12", entry_id="40")
"""

import logging

import logfire
from fastapi import FastAPI

from src.core.config import settings


SERVICE_NAME = "questline"
SERVICE_VERSION = "0.1.0"


def configure_logfire() -> None:
    """Configure Pydantic Logfire with token from environment.

    Standard library log records are routed through Logfire's handler so
    ``extra={...}`` fields become structured attributes.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name=SERVICE_NAME,
        service_version=SERVICE_VERSION,
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )
    logging.basicConfig(level=logging.INFO, handlers=[logfire.LogfireLoggingHandler()])

    logger = logging.getLogger(__name__)
    logger.info("Logfire configured successfully")


def instrument_fastapi(app: FastAPI) -> None:
    """Add Logfire instrumentation to FastAPI application."""
    logfire.instrument_fastapi(app)
    logger = logging.getLogger(__name__)
    logger.info("FastAPI instrumentation configured")


def instrument_pydantic_ai() -> None:
    """Trace AI judge calls (agent runs and model requests) through Logfire."""
    logfire.instrument_pydantic_ai()
    logger = logging.getLogger(__name__)
    logger.info("Pydantic AI instrumentation configured")


def span(name: str) -> logfire.LogfireSpan:
    """Open a Logfire span named ``<module>.<operation>``, e.g. ``"completion_service.complete_task"``."""
    return logfire.span(name)


def log_with_user_context(
    logger: logging.Logger,
    level: str,
    message: str,
    user_id: str | None = None,
    **extra: object,
) -> None:
    """Log ``message`` at ``level`` with ``user_id`` and any extra fields attached.

    ``user_id`` is omitted from the record when not given.
    """
    context = {"user_id": user_id, **extra} if user_id else extra
    getattr(logger, level.lower())(message, extra=context)
