"""
Issuance throttle and verification lockout.

Two independent throttles:
- IssuanceThrottle bounds how often codes are sent for one
  (identity, purpose): a still-valid code blocks a fresh request, and a
  sliding window caps sends per hour regardless of path.
- LockoutPolicy bounds failed verification attempts on the current record.
  The lock lives on the record, so any new send clears it.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from errors import AlreadySentError, RateLimitError
from infrastructure.otp_store.protocol import CredentialStore
from schemas.models.otp import OTPRecord, Purpose
from shared.logging import get_logger, hash_identity

log = get_logger(__name__)


class IssuanceThrottle:
    def __init__(
        self,
        store: CredentialStore,
        max_sends: int = 3,
        window: timedelta = timedelta(hours=1),
    ) -> None:
        self._store = store
        self.max_sends = max_sends
        self.window = window

    def check_existing(self, existing: Optional[OTPRecord], now: datetime) -> None:
        """Raise AlreadySentError if *existing* is still an active code."""
        if existing is not None and existing.is_active(now):
            retry_after = existing.seconds_until_expiry(now)
            raise AlreadySentError(
                "A code was already sent. Please wait before requesting another one.",
                retry_after=retry_after,
            )

    async def check_quota(self, identity: str, purpose: Purpose, now: datetime) -> None:
        """Raise RateLimitError once the send window is full."""
        sent = await self._store.count_issuances(identity, purpose, now - self.window)
        if sent >= self.max_sends:
            log.warning(
                "otp_send_rate_limited",
                identity=hash_identity(identity),
                purpose=purpose.value,
                sent=sent,
            )
            raise RateLimitError(
                "Too many codes requested. Please try again later.",
                retry_after=int(self.window.total_seconds()),
            )


class LockoutPolicy:
    def __init__(
        self, max_attempts: int = 3, lockout: timedelta = timedelta(minutes=15)
    ) -> None:
        self.max_attempts = max_attempts
        self.lockout = lockout

    def attempts_left(self, record: OTPRecord) -> int:
        return max(0, self.max_attempts - record.attempts)

    def retry_after(self, record: OTPRecord, now: datetime) -> int:
        return record.seconds_until_unlock(now)
