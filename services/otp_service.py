"""
OTP lifecycle manager.

States per (identity, purpose):

    NONE --send--> ACTIVE --match--> CONSUMED
                     |  +--expiry--> EXPIRED
                     +--3 misses--> LOCKED (still ACTIVE, rejects everything)

Any send (subject to the issuance throttle) replaces the current record,
which also discards its attempt counter and lock. CONSUMED and EXPIRED are
terminal for a record; further verifies see "not found" until a new send.

Per-key atomicity is the store's job (see infrastructure/otp_store). This
service reads, decides, then applies conditional writes that name the exact
record it read, so a concurrent supersede or consume is detected instead of
overwritten.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from errors import (
    AlreadySentError,
    CodeExpiredError,
    DeliveryFailedError,
    IdentityInvalidForPurposeError,
    InvalidCodeError,
    NotFoundError,
    TooManyAttemptsError,
    ValidationError,
)
from infrastructure.email.protocol import Notifier, OTPDelivery
from infrastructure.otp_store.protocol import CredentialStore
from schemas.models.credential import IssuedCredential
from schemas.models.otp import OTPRecord, Purpose
from schemas.models.user import UserDoc
from services.otp_policy import AccountRule, OTPPolicy, PurposePolicy
from services.rate_limiter import IssuanceThrottle, LockoutPolicy
from services.token_issuer import TokenIssuer
from shared.crypto import code_matches, hash_code
from shared.datetime_utils import Clock, utcnow
from shared.generators import generate_otp_code, generate_record_id
from shared.logging import get_logger, hash_identity
from shared.validators import normalize_identity, validate_code_shape, validate_identity

log = get_logger(__name__)


class UserLookup(Protocol):
    async def find_by_email(self, email: str) -> Optional[UserDoc]: ...


@dataclass(frozen=True)
class CodeIssued:
    expires_at: datetime
    expires_in: int


@dataclass(frozen=True)
class CodeStatus:
    purpose: Purpose
    attempts: int
    attempts_left: int
    expires_at: datetime
    expires_in: int
    locked: bool
    retry_after: int


class OTPService:
    def __init__(
        self,
        store: CredentialStore,
        notifier: Notifier,
        users: UserLookup,
        issuer: TokenIssuer,
        policy: OTPPolicy,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._users = users
        self._issuer = issuer
        self._policy = policy
        self._clock = clock
        self._throttle = IssuanceThrottle(store, policy.max_sends, policy.send_window)
        self._lockout = LockoutPolicy(policy.max_attempts, policy.lockout)

    # ── Issuance ─────────────────────────────────────────────────────────────

    async def request_code(self, identity: str, purpose: Purpose) -> CodeIssued:
        """Issue a code unless a still-valid one exists (already_sent)."""
        return await self._issue(identity, purpose, replace_active=False)

    async def resend_code(self, identity: str, purpose: Purpose) -> CodeIssued:
        """Issue a code that supersedes any outstanding one.

        The previous code stops matching and its attempt counter and lock
        are discarded. Only the hourly send cap applies.
        """
        return await self._issue(identity, purpose, replace_active=True)

    async def _issue(
        self, identity: str, purpose: Purpose, *, replace_active: bool
    ) -> CodeIssued:
        identity = self._normalize_identity(identity)
        purpose_policy = self._purpose_policy(purpose)
        purpose = purpose_policy.purpose
        now = self._clock()
        expires_in = int(purpose_policy.ttl.total_seconds())

        applicable, user = await self._check_account(identity, purpose_policy)
        if not applicable:
            # Same response as a real send: callers cannot probe for accounts
            log.info(
                "otp_request_concealed",
                identity=hash_identity(identity),
                purpose=purpose.value,
            )
            return CodeIssued(expires_at=now + purpose_policy.ttl, expires_in=expires_in)

        if not replace_active:
            existing = await self._store.get(identity, purpose)
            self._throttle.check_existing(existing, now)
        await self._throttle.check_quota(identity, purpose, now)

        code = generate_otp_code(purpose_policy.code_length, purpose_policy.code_format)
        record = OTPRecord(
            record_id=generate_record_id(),
            identity=identity,
            purpose=purpose,
            code_hash=hash_code(code),
            issued_at=now,
            expires_at=now + purpose_policy.ttl,
        )
        result = await self._store.put(record, replace_active=replace_active)
        if not result.stored:
            # lost the race against a concurrent request for the same key
            self._throttle.check_existing(result.previous, now)
            raise AlreadySentError("A code was already sent.")
        await self._store.log_issuance(identity, purpose, now)

        payload = OTPDelivery(
            code=code,
            purpose=purpose,
            expires_in_minutes=purpose_policy.ttl_minutes,
            recipient_name=user.first_name if user is not None else None,
        )
        if not await self._deliver(identity, payload):
            await self._store.restore(record, result.previous)
            await self._store.discard_issuance(identity, purpose, now)
            raise DeliveryFailedError(
                "Failed to send the verification code. Please try again."
            )

        log.info(
            "otp_issued",
            identity=hash_identity(identity),
            purpose=purpose.value,
            superseded=result.previous is not None,
            expires_at=record.expires_at.isoformat(),
        )
        return CodeIssued(expires_at=record.expires_at, expires_in=expires_in)

    async def _deliver(self, identity: str, payload: OTPDelivery) -> bool:
        try:
            delivered = await asyncio.wait_for(
                self._notifier.deliver(identity, payload),
                timeout=self._policy.delivery_timeout,
            )
        except asyncio.TimeoutError:
            log.error(
                "otp_delivery_failed",
                identity=hash_identity(identity),
                purpose=payload.purpose.value,
                reason="timeout",
            )
            return False
        except Exception as e:
            log.error(
                "otp_delivery_failed",
                identity=hash_identity(identity),
                purpose=payload.purpose.value,
                reason="error",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        if not delivered:
            log.error(
                "otp_delivery_failed",
                identity=hash_identity(identity),
                purpose=payload.purpose.value,
                reason="rejected",
            )
        return bool(delivered)

    # ── Verification ─────────────────────────────────────────────────────────

    async def verify_code(
        self, identity: str, code: str, purpose: Purpose
    ) -> IssuedCredential:
        """Check *code* and, on a match, consume the record and mint a credential.

        Raises:
            ValidationError: malformed identity or code (no state touched).
            NotFoundError: no outstanding code for this identity/purpose.
            CodeExpiredError: the code's lifetime has passed.
            TooManyAttemptsError: the record is locked.
            InvalidCodeError: wrong code; ``attempts_left`` tells how many remain.
        """
        identity = self._normalize_identity(identity)
        purpose_policy = self._purpose_policy(purpose)
        purpose = purpose_policy.purpose
        code = (code or "").strip()
        if not validate_code_shape(
            code, purpose_policy.code_length, purpose_policy.code_format
        ):
            raise ValidationError("Invalid code format", field="code")

        now = self._clock()
        log_ctx = {"identity": hash_identity(identity), "purpose": purpose.value}

        record = await self._store.get(identity, purpose)
        if record is None:
            log.warning("otp_verify_failed", reason="not_found", **log_ctx)
            raise NotFoundError("No active code found. Please request a new one.")

        if record.is_expired(now):
            await self._store.consume(identity, purpose, record.record_id)
            log.warning("otp_verify_failed", reason="expired", **log_ctx)
            raise CodeExpiredError("Code has expired. Please request a new one.")

        if record.is_locked(now):
            log.warning("otp_verify_failed", reason="locked", **log_ctx)
            raise self._locked_error(record, now)

        if code_matches(code, record.code_hash):
            if not await self._store.consume(
                identity, purpose, record.record_id, at=now
            ):
                raise await self._lost_race(identity, purpose, record, now)
            credential = self._issuer.issue(
                identity, purpose, purpose_policy.tier, now=now
            )
            log.info("otp_verified", tier=purpose_policy.tier.value, **log_ctx)
            return credential

        updated = await self._store.record_failure(
            identity,
            purpose,
            record.record_id,
            at=now,
            max_attempts=self._lockout.max_attempts,
            lockout=self._lockout.lockout,
        )
        if updated is None:
            log.warning("otp_verify_failed", reason="superseded", **log_ctx)
            raise NotFoundError("No active code found. Please request a new one.")
        if updated.is_locked(now):
            log.warning("otp_locked", attempts=updated.attempts, **log_ctx)
            raise self._locked_error(updated, now)

        attempts_left = self._lockout.attempts_left(updated)
        log.warning(
            "otp_verify_failed",
            reason="invalid_code",
            attempts_left=attempts_left,
            **log_ctx,
        )
        raise InvalidCodeError(
            "Invalid code. Please try again.", attempts_left=attempts_left
        )

    async def _lost_race(
        self, identity: str, purpose: Purpose, record: OTPRecord, now: datetime
    ) -> Exception:
        """Explain why a matching code could not be consumed."""
        current = await self._store.get(identity, purpose)
        if (
            current is not None
            and current.record_id == record.record_id
            and current.is_locked(now)
        ):
            return self._locked_error(current, now)
        log.warning(
            "otp_verify_failed",
            reason="consumed_concurrently",
            identity=hash_identity(identity),
            purpose=purpose.value,
        )
        return NotFoundError("No active code found. Please request a new one.")

    def _locked_error(self, record: OTPRecord, now: datetime) -> TooManyAttemptsError:
        return TooManyAttemptsError(
            "Too many failed attempts. Please try again later.",
            retry_after=self._lockout.retry_after(record, now),
        )

    # ── Status ───────────────────────────────────────────────────────────────

    async def get_status(self, identity: str, purpose: Purpose) -> CodeStatus:
        identity = self._normalize_identity(identity)
        purpose = self._purpose_policy(purpose).purpose
        now = self._clock()
        record = await self._store.get(identity, purpose)
        if record is None or record.is_expired(now):
            raise NotFoundError("No active code found.")
        return CodeStatus(
            purpose=purpose,
            attempts=record.attempts,
            attempts_left=self._lockout.attempts_left(record),
            expires_at=record.expires_at,
            expires_in=record.seconds_until_expiry(now),
            locked=record.is_locked(now),
            retry_after=self._lockout.retry_after(record, now),
        )

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _normalize_identity(self, identity: str) -> str:
        normalized = normalize_identity(identity)
        if not validate_identity(normalized):
            raise ValidationError("A valid email address is required", field="email")
        return normalized

    def _purpose_policy(self, purpose: Purpose) -> PurposePolicy:
        try:
            return self._policy.for_purpose(Purpose(purpose))
        except (ValueError, KeyError) as e:
            raise ValidationError("Unknown purpose", field="purpose") from e

    async def _check_account(
        self, identity: str, purpose_policy: PurposePolicy
    ) -> tuple[bool, Optional[UserDoc]]:
        """Apply the purpose's account rule.

        Returns (applicable, user). Not applicable only for concealing
        purposes; every other mismatch raises.
        """
        user = await self._users.find_by_email(identity)
        rule = purpose_policy.account_rule
        purpose = purpose_policy.purpose.value

        if rule is AccountRule.NOT_VERIFIED:
            if user is not None and user.email_verified:
                raise IdentityInvalidForPurposeError(
                    "An account with this email already exists.", field="email"
                )
        elif rule is AccountRule.PENDING:
            if user is None or user.email_verified:
                raise IdentityInvalidForPurposeError(
                    "No pending registration for this email.", field="email"
                )
        elif rule is AccountRule.EXISTING and user is None:
            if purpose_policy.conceal_unknown:
                return False, None
            raise IdentityInvalidForPurposeError(
                f"Email is not eligible for {purpose}.", field="email"
            )
        return True, user
