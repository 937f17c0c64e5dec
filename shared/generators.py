"""
Random code and identifier generators. Pure functions without side effects.

Everything here draws from the ``secrets`` module: codes must not be
guessable from the system clock or a seeded PRNG.
"""

from __future__ import annotations

import secrets
import string
from enum import Enum

# Visually ambiguous characters (0/O/o, 1/I/l) are left out so codes can be
# read back from an email without confusion.
UNAMBIGUOUS_ALPHANUMERIC = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnpqrstuvwxyz23456789"

MIN_CODE_LENGTH = 4


class CodeFormat(str, Enum):
    NUMERIC = "numeric"
    ALPHANUMERIC = "alphanumeric"


def code_alphabet(code_format: CodeFormat) -> str:
    """Return the alphabet a code of *code_format* is drawn from."""
    if CodeFormat(code_format) is CodeFormat.ALPHANUMERIC:
        return UNAMBIGUOUS_ALPHANUMERIC
    return string.digits


def generate_otp_code(
    length: int = 6, code_format: CodeFormat = CodeFormat.NUMERIC
) -> str:
    """Generate a cryptographically secure one-time code.

    Args:
        length: Number of characters (default 6, minimum 4).
        code_format: ``NUMERIC`` for digits only, ``ALPHANUMERIC`` for the
            unambiguous letter/digit alphabet.

    Returns:
        Code drawn uniformly from the format's alphabet.

    Raises:
        ValueError: if *length* is below the minimum.
    """
    if length < MIN_CODE_LENGTH:
        raise ValueError(f"code length must be at least {MIN_CODE_LENGTH}")
    alphabet = code_alphabet(code_format)
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_record_id() -> str:
    """Opaque identifier for a single OTP issuance (32 hex chars)."""
    return secrets.token_hex(16)


def generate_account_id() -> str:
    """Public 6-digit account number (never starts with 0)."""
    return str(100000 + secrets.randbelow(900000))


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure URL-safe random token.

    Args:
        length: Number of random bytes before base64 encoding (default 32).

    Returns:
        URL-safe base64-encoded token string.
    """
    return secrets.token_urlsafe(length)
