"""
Per-purpose OTP policy table.

Every purpose gets its own code shape, lifetime, credential tier and
account rule. The defaults mirror the product rules: 6-digit codes valid
for 10 minutes, except password reset which uses a longer alphanumeric
code valid for 15 minutes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from config import OTPSettings
from schemas.models.credential import CredentialTier
from schemas.models.otp import Purpose
from shared.generators import CodeFormat


class AccountRule(str, Enum):
    """What the identity lookup must say before a code may be issued."""

    NOT_VERIFIED = "not_verified"  # no account, or an account still pending
    PENDING = "pending"  # an existing, unverified account
    EXISTING = "existing"  # any existing account


@dataclass(frozen=True)
class PurposePolicy:
    purpose: Purpose
    code_length: int
    code_format: CodeFormat
    ttl: timedelta
    tier: CredentialTier
    account_rule: AccountRule
    # Unknown accounts get the generic success response instead of an error
    conceal_unknown: bool = False

    @property
    def ttl_minutes(self) -> int:
        return max(1, int(self.ttl.total_seconds() // 60))


@dataclass(frozen=True)
class OTPPolicy:
    purposes: dict[Purpose, PurposePolicy] = field(default_factory=dict)
    max_attempts: int = 3
    lockout: timedelta = timedelta(minutes=15)
    max_sends: int = 3
    send_window: timedelta = timedelta(hours=1)
    delivery_timeout: float = 10.0

    def for_purpose(self, purpose: Purpose) -> PurposePolicy:
        return self.purposes[Purpose(purpose)]

    @classmethod
    def from_settings(cls, settings: OTPSettings) -> "OTPPolicy":
        code_ttl = timedelta(seconds=settings.otp_ttl_seconds)
        code_format = CodeFormat(settings.otp_code_format)

        def standard(
            purpose: Purpose,
            tier: CredentialTier,
            rule: AccountRule,
            conceal: bool = False,
        ) -> PurposePolicy:
            return PurposePolicy(
                purpose=purpose,
                code_length=settings.otp_code_length,
                code_format=code_format,
                ttl=code_ttl,
                tier=tier,
                account_rule=rule,
                conceal_unknown=conceal,
            )

        purposes = {
            Purpose.EMAIL_VERIFICATION: standard(
                Purpose.EMAIL_VERIFICATION,
                CredentialTier.INTERMEDIATE,
                AccountRule.NOT_VERIFIED,
            ),
            Purpose.REGISTRATION: standard(
                Purpose.REGISTRATION, CredentialTier.SESSION, AccountRule.PENDING
            ),
            Purpose.LOGIN_VERIFICATION: standard(
                Purpose.LOGIN_VERIFICATION,
                CredentialTier.SESSION,
                AccountRule.EXISTING,
                conceal=True,
            ),
            Purpose.PASSWORD_RESET: PurposePolicy(
                purpose=Purpose.PASSWORD_RESET,
                code_length=settings.password_reset_code_length,
                code_format=CodeFormat(settings.password_reset_code_format),
                ttl=timedelta(seconds=settings.password_reset_ttl_seconds),
                tier=CredentialTier.INTERMEDIATE,
                account_rule=AccountRule.EXISTING,
                conceal_unknown=True,
            ),
        }
        return cls(
            purposes=purposes,
            max_attempts=settings.otp_max_attempts,
            lockout=timedelta(seconds=settings.otp_lockout_seconds),
            max_sends=settings.otp_max_sends_per_window,
            send_window=timedelta(seconds=settings.otp_send_window_seconds),
            delivery_timeout=settings.otp_delivery_timeout_seconds,
        )
