"""
Response DTOs for account endpoints.

UserProfileResponse — profile shape used in session responses and /auth/me
SessionResponse     — POST /auth/login, POST /auth/complete-registration (200)
RegisterResponse    — POST /auth/register (201)
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.models.credential import IssuedCredential
from schemas.models.user import UserDoc


class UserProfileResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    account_id: str
    email: str
    first_name: str
    last_name: str
    email_verified: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: UserDoc) -> "UserProfileResponse":
        return cls(
            id=str(user.id),
            account_id=user.account_id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            email_verified=user.email_verified,
            created_at=user.created_at,
        )


class SessionResponse(BaseModel):
    """Response body for a successful sign-in (200)."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str
    token_type: str = "Bearer"
    expires_at: datetime
    expires_in: int
    user: UserProfileResponse

    @classmethod
    def build(cls, user: UserDoc, session: IssuedCredential) -> "SessionResponse":
        return cls(
            access_token=session.token,
            expires_at=session.expires_at,
            expires_in=session.expires_in,
            user=UserProfileResponse.from_user(user),
        )


class RegisterResponse(BaseModel):
    """Response body for POST /auth/register (201)."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "Registration started. Check your email for a verification code."
    requires_verification: bool = True
    expires_at: datetime
    expires_in: int
