"""
Structured Logging with Structlog.

Every log line is a JSON object carrying the service name and version.
Credentials that pass through the storefront (payment client secrets,
passwords, session and GPT access tokens) are masked before rendering.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from storefront.config import settings

# Keys whose values must never reach a log sink
REDACTED_KEYS = frozenset(
    {
        "access_token",
        "client_secret",
        "password",
        "password_hash",
        "refresh_token",
        "reset_token",
        "token",
    }
)
REDACTED = "[redacted]"


def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential values, keeping a short prefix of tokens for correlation."""
    for key in REDACTED_KEYS.intersection(event_dict):
        value = event_dict[key]
        if key.endswith("token") and isinstance(value, str) and len(value) > 12:
            event_dict[key] = f"{value[:6]}...{REDACTED}"
        else:
            event_dict[key] = REDACTED
    return event_dict


def build_processors(log_format: str, debug: bool) -> list[Processor]:
    """Processor chain shared by the API and the fulfilment script."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.ExceptionRenderer() if debug else structlog.processors.format_exc_info,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging() -> None:
    """
    Configure structlog over the standard library root logger.

    A reconciliation line looks like:
    {
        "event": "payment_reconciled",
        "level": "info",
        "timestamp": "2026-10-19T12:00:00.123456Z",
        "logger": "storefront.services.reconciliation",
        "service": "gpt-storefront",
        "version": "0.1.0",
        "payment_intent_id": "pi_123",
        "trigger": "webhook"
    }
    """
    level = settings.log_level.upper()
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level))

    structlog.configure(
        processors=build_processors(settings.log_format, debug=level == "DEBUG"),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind fields to every log line emitted inside the block.

    Usage:
        with log_context(payment_intent_id="pi_123", trigger="webhook"):
            logger.info("reconciling_payment")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context)
