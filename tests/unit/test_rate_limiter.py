"""Unit tests for IssuanceThrottle, LockoutPolicy and the per-purpose OTPPolicy."""

from datetime import datetime, timedelta, timezone

import pytest

from config import OTPSettings
from errors import AlreadySentError, RateLimitError
from infrastructure.otp_store.memory_store import InMemoryCredentialStore
from schemas.models.credential import CredentialTier
from schemas.models.otp import OTPRecord, Purpose
from services.otp_policy import AccountRule, OTPPolicy
from services.rate_limiter import IssuanceThrottle, LockoutPolicy
from shared.generators import CodeFormat

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
EMAIL = "user@example.com"


def _record(**overrides) -> OTPRecord:
    data = dict(
        record_id="r1",
        identity=EMAIL,
        purpose=Purpose.LOGIN_VERIFICATION,
        code_hash="h" * 64,
        issued_at=NOW,
        expires_at=NOW + timedelta(minutes=10),
    )
    data.update(overrides)
    return OTPRecord(**data)


class TestIssuanceThrottle:
    def test_no_existing_record_passes(self):
        IssuanceThrottle(InMemoryCredentialStore()).check_existing(None, NOW)

    def test_active_record_blocks_with_remaining_validity(self):
        throttle = IssuanceThrottle(InMemoryCredentialStore())
        with pytest.raises(AlreadySentError) as exc_info:
            throttle.check_existing(_record(), NOW + timedelta(minutes=4))
        assert exc_info.value.retry_after == 360

    def test_expired_record_does_not_block(self):
        throttle = IssuanceThrottle(InMemoryCredentialStore())
        throttle.check_existing(_record(), NOW + timedelta(minutes=10))

    async def test_quota(self):
        store = InMemoryCredentialStore()
        throttle = IssuanceThrottle(store, max_sends=2, window=timedelta(hours=1))
        await store.log_issuance(EMAIL, Purpose.LOGIN_VERIFICATION, NOW - timedelta(minutes=50))
        await throttle.check_quota(EMAIL, Purpose.LOGIN_VERIFICATION, NOW)
        await store.log_issuance(EMAIL, Purpose.LOGIN_VERIFICATION, NOW)
        with pytest.raises(RateLimitError) as exc_info:
            await throttle.check_quota(EMAIL, Purpose.LOGIN_VERIFICATION, NOW)
        assert exc_info.value.retry_after == 3600
        # the oldest send leaves the window
        await throttle.check_quota(
            EMAIL, Purpose.LOGIN_VERIFICATION, NOW + timedelta(minutes=11)
        )


class TestLockoutPolicy:
    def test_attempts_left(self):
        policy = LockoutPolicy(max_attempts=3)
        assert policy.attempts_left(_record(attempts=1)) == 2
        assert policy.attempts_left(_record(attempts=3)) == 0

    def test_retry_after(self):
        policy = LockoutPolicy()
        locked = _record(attempts=3, locked_until=NOW + timedelta(minutes=15))
        assert policy.retry_after(locked, NOW) == 900
        assert policy.retry_after(_record(), NOW) == 0


class TestOTPPolicy:
    def test_defaults_from_settings(self):
        policy = OTPPolicy.from_settings(OTPSettings())
        assert policy.max_attempts == 3
        assert policy.lockout == timedelta(minutes=15)
        assert policy.max_sends == 3
        assert policy.send_window == timedelta(hours=1)

    @pytest.mark.parametrize(
        "purpose, tier, rule, conceal",
        [
            (Purpose.EMAIL_VERIFICATION, CredentialTier.INTERMEDIATE, AccountRule.NOT_VERIFIED, False),
            (Purpose.PASSWORD_RESET, CredentialTier.INTERMEDIATE, AccountRule.EXISTING, True),
            (Purpose.LOGIN_VERIFICATION, CredentialTier.SESSION, AccountRule.EXISTING, True),
            (Purpose.REGISTRATION, CredentialTier.SESSION, AccountRule.PENDING, False),
        ],
    )
    def test_purpose_table(self, purpose, tier, rule, conceal):
        pp = OTPPolicy.from_settings(OTPSettings()).for_purpose(purpose)
        assert pp.tier is tier
        assert pp.account_rule is rule
        assert pp.conceal_unknown is conceal

    def test_password_reset_code_shape(self):
        pp = OTPPolicy.from_settings(OTPSettings()).for_purpose(Purpose.PASSWORD_RESET)
        assert pp.code_length == 10
        assert pp.code_format is CodeFormat.ALPHANUMERIC
        assert pp.ttl_minutes == 15

    def test_configurable_code_length(self, monkeypatch):
        monkeypatch.setenv("OTP_CODE_LENGTH", "8")
        pp = OTPPolicy.from_settings(OTPSettings()).for_purpose(Purpose.EMAIL_VERIFICATION)
        assert pp.code_length == 8
        assert pp.code_format is CodeFormat.NUMERIC
