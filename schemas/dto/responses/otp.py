"""
Response DTOs for OTP endpoints.

CodeSentResponse      — POST /auth/otp/request, POST /auth/otp/resend (200)
CredentialResponse    — POST /auth/otp/verify (200)
CodeStatusResponse    — GET  /auth/otp/status (200)
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from schemas.models.credential import CredentialTier, IssuedCredential
from schemas.models.otp import Purpose

GENERIC_SENT_MESSAGE = "If the address is eligible, a verification code has been sent."


class CodeSentResponse(BaseModel):
    """Identical for real and concealed sends."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = GENERIC_SENT_MESSAGE
    expires_at: datetime
    expires_in: int


class CredentialResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    token: str
    token_type: str = "Bearer"
    purpose: Purpose
    tier: CredentialTier
    expires_at: datetime
    expires_in: int

    @classmethod
    def from_credential(cls, credential: IssuedCredential) -> "CredentialResponse":
        return cls(
            token=credential.token,
            purpose=credential.purpose,
            tier=credential.tier,
            expires_at=credential.expires_at,
            expires_in=credential.expires_in,
        )


class CodeStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    purpose: Purpose
    attempts: int
    attempts_left: int
    expires_at: datetime
    expires_in: int
    locked: bool
    retry_after: int
