"""
One-time code record model.

One OTPRecord represents one outstanding verification challenge for an
(identity, purpose) pair. code_hash stores SHA-256(code); the plain code
is never stored. consumed is the logical delete: a consumed record is
invisible to lookups and can never match again.

The same model backs every store: the memory store keeps instances, the
Mongo store writes to_document() into the `otp-records` collection, and the
Redis store keeps model_dump_json().
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from shared.datetime_utils import ensure_utc, seconds_until


class Purpose(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    LOGIN_VERIFICATION = "login_verification"
    REGISTRATION = "registration"


def record_key(identity: str, purpose: Purpose) -> str:
    """Deterministic store key for an (identity, purpose) pair."""
    return f"{Purpose(purpose).value}:{identity}"


class OTPRecord(BaseModel):
    record_id: str
    identity: str
    purpose: Purpose
    code_hash: str
    issued_at: datetime
    expires_at: datetime
    attempts: int = Field(default=0, ge=0)
    locked_until: Optional[datetime] = None
    consumed: bool = False

    @field_validator("issued_at", "expires_at", "locked_until")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def key(self) -> str:
        return record_key(self.identity, self.purpose)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and now < self.locked_until

    def is_active(self, now: datetime) -> bool:
        """Unconsumed and unexpired (a locked record is still active)."""
        return not self.consumed and not self.is_expired(now)

    def seconds_until_expiry(self, now: datetime) -> int:
        return seconds_until(self.expires_at, now)

    def seconds_until_unlock(self, now: datetime) -> int:
        if self.locked_until is None:
            return 0
        return seconds_until(self.locked_until, now)

    def to_document(self) -> dict:
        """Dict for the `otp-records` collection; ``_id`` is the store key."""
        data = self.model_dump(mode="python")
        data["purpose"] = self.purpose.value
        data["_id"] = self.key
        return data

    @classmethod
    def from_document(cls, data: Optional[dict]) -> Optional["OTPRecord"]:
        if data is None:
            return None
        data = {k: v for k, v in data.items() if k != "_id"}
        return cls.model_validate(data)
