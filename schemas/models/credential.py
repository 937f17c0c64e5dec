"""
Issued credential model.

The issuer is stateless: a credential is never persisted, it is verified
by signature, embedded expiry, purpose and tier claims.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from schemas.models.otp import Purpose


class CredentialTier(str, Enum):
    INTERMEDIATE = "intermediate"  # chains a verification into a follow-up action
    SESSION = "session"  # full authentication


class IssuedCredential(BaseModel):
    token: str
    identity: str
    purpose: Purpose
    tier: CredentialTier
    issued_at: datetime
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())
