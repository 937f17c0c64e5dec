"""
Logger factory and helpers.

Provides:
- get_logger(): Get a configured structlog logger instance
- hash_identity(): Hash identities (emails) for privacy in production
"""

from __future__ import annotations

from typing import Optional

import structlog
from structlog.stdlib import BoundLogger

from shared.logging_config import hash_identity as _hash_identity
from shared.logging_config import setup_logging


def get_logger(name: str) -> BoundLogger:
    """
    Get a configured logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("otp_issued", purpose="password_reset")
    """
    return structlog.get_logger(name)


def hash_identity(identity: Optional[str]) -> Optional[str]:
    """None-tolerant wrapper around logging_config.hash_identity()."""
    if identity is None:
        return None
    return _hash_identity(identity)


__all__ = [
    "get_logger",
    "hash_identity",
    "setup_logging",
]
