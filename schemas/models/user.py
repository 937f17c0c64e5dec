"""
User document model.

Maps to the `users` MongoDB collection.

Two states matter to the OTP flows:
- pending: created by POST /auth/register, email_verified False, waiting for
  a `registration` code
- verified: email_verified True, either after the registration code or when
  created through complete-registration
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import field_validator

from schemas.models.base import MongoBaseModel
from shared.datetime_utils import ensure_utc


class UserDoc(MongoBaseModel):
    """Document model for the `users` collection."""

    email: str
    first_name: str
    last_name: str
    password_hash: Optional[str] = None
    email_verified: bool = False
    account_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    password_changed_at: Optional[datetime] = None
    # jti of the password-reset credential that set the current password
    password_reset_jti: Optional[str] = None

    @field_validator("created_at", "updated_at", "password_changed_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # pymongo hands back naive UTC datetimes
        return ensure_utc(value)
