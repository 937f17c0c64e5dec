"""
Input validators. Framework-agnostic, pure functions.

Shape checks only: nothing here touches a store. They run before the OTP
lifecycle so malformed input never mutates state.
"""

from __future__ import annotations

import re

import validators as _validators

from shared.generators import CodeFormat, code_alphabet

_NAME_PATTERN = re.compile(r"^[^\W\d_][\w .'-]{0,24}$", re.UNICODE)


def normalize_identity(identity: str) -> str:
    """Trim and lower-case an email so lookups are case-insensitive."""
    return (identity or "").strip().lower()


def validate_identity(identity: str) -> bool:
    """Return True if *identity* (already normalized) is a syntactically valid email."""
    if not identity or len(identity) > 254:
        return False
    return bool(_validators.email(identity))


def validate_code_shape(code: str, length: int, code_format: CodeFormat) -> bool:
    """Return True if *code* has the exact length and alphabet of the policy."""
    if not code or len(code) != length:
        return False
    alphabet = set(code_alphabet(code_format))
    return all(char in alphabet for char in code)


def validate_name(name: str) -> bool:
    """First/last name: 1-25 characters, starting with a letter."""
    return bool(_NAME_PATTERN.match(name or ""))


def password_requirements(password: str) -> list[str]:
    """Return the unmet password requirements (empty list when valid).

    Rules:
    - 8 to 128 characters
    - At least one letter
    - At least one digit
    """
    missing: list[str] = []
    if not password or len(password) < 8:
        missing.append("At least 8 characters")
    elif len(password) > 128:
        missing.append("Maximum 128 characters")
    if not re.search(r"[A-Za-z]", password or ""):
        missing.append("At least one letter")
    if not re.search(r"[0-9]", password or ""):
        missing.append("At least one number")
    return missing
