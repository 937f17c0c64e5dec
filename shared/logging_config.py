"""
Centralized logging configuration.

This module sets up structured logging with:
- JSON formatting for production, pretty console for development
- Redaction of secrets (passwords, tokens, one-time codes)
- Identity hashing in production so raw email addresses stay out of logs
- Sentry breadcrumbs when a DSN is configured

setup_logging() is called once from the application factory.
"""

from __future__ import annotations

import hashlib
import logging
import sys
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, Processor

# Fields whose values must never reach a log sink
REDACTED_FIELDS = {
    "password",
    "password_hash",
    "token",
    "code",
    "otp",
    "otp_code",
    "code_hash",
    "authorization",
    "cookie",
    "secret",
    "key",
}

_SENSITIVE_FRAGMENTS = ("password", "token", "secret", "otp")
_PASSTHROUGH = {"level", "event", "timestamp", "logger", "error_code"}

_hash_identities = False


def hash_identity(identity: str) -> str:
    """
    Hash an identity (email) for privacy in production.

    In production, returns the first 16 hex chars of its SHA-256 digest.
    In development, returns the identity unchanged for easier debugging.
    """
    if _hash_identities and identity:
        return hashlib.sha256(identity.encode("utf-8")).hexdigest()[:16]
    return identity


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to event dict."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Redact sensitive fields from logs."""
    for key in list(event_dict.keys()):
        if key in _PASSTHROUGH:
            continue
        lowered = key.lower()
        if lowered in REDACTED_FIELDS or any(
            fragment in lowered for fragment in _SENSITIVE_FRAGMENTS
        ):
            event_dict[key] = "***REDACTED***"
    return event_dict


def configure_structlog(log_format: str) -> None:
    """
    Configure structlog with appropriate processors for the environment.

    Production: JSON formatting for easy parsing
    Development: Pretty console formatting with colors
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        redact_sensitive_fields,
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            pad_event=15,
            sort_keys=False,
        )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_stdlib_logging(log_level: str) -> None:
    """Route stdlib logging to stdout and quiet noisy third-party loggers."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    *,
    hash_identities: bool = False,
    sentry_enabled: bool = False,
) -> None:
    """
    Initialize logging system for the application.

    Should be called early in application startup (in create_app).
    """
    global _hash_identities
    _hash_identities = hash_identities

    configure_stdlib_logging(log_level)
    configure_structlog(log_format)

    logger = structlog.get_logger(__name__)
    logger.info(
        "logging_initialized",
        log_level=log_level,
        log_format=log_format,
        hash_identities=hash_identities,
        sentry_enabled=sentry_enabled,
    )
