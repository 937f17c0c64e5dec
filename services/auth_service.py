"""
Account flows built on top of the OTP lifecycle.

register                → pending account + `registration` code
(verify registration)   → apply_verification() marks the account verified
complete_registration   → `email_verification` intermediate credential
                          turned into a verified account + session
login                   → password check → session credential
reset_password          → `password_reset` intermediate credential
                          turned into a new password
me                      → session credential → profile
"""

from __future__ import annotations

from typing import Optional

from errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from repositories.user_repository import UserRepository
from schemas.models.credential import CredentialTier, IssuedCredential
from schemas.models.otp import Purpose
from schemas.models.user import UserDoc
from services.otp_service import CodeIssued, OTPService
from services.token_issuer import TokenIssuer
from shared.crypto import hash_password, verify_password
from shared.datetime_utils import Clock, utcnow
from shared.logging import get_logger, hash_identity
from shared.validators import (
    normalize_identity,
    password_requirements,
    validate_identity,
    validate_name,
)

log = get_logger(__name__)

SESSION_PURPOSES = (Purpose.LOGIN_VERIFICATION, Purpose.REGISTRATION)


class AuthService:
    def __init__(
        self,
        users: UserRepository,
        otp: OTPService,
        issuer: TokenIssuer,
        clock: Clock = utcnow,
    ) -> None:
        self._users = users
        self._otp = otp
        self._issuer = issuer
        self._clock = clock

    async def register(
        self, email: str, password: str, first_name: str, last_name: str
    ) -> CodeIssued:
        """Create (or refresh) a pending account and send a registration code.

        Raises:
            ValidationError: bad email, name or password.
            ConflictError: the email belongs to a verified account.
        """
        email = self._check_email(email)
        self._check_names(first_name, last_name)
        self._check_password(password)

        existing = await self._users.find_by_email(email)
        if existing is not None and existing.email_verified:
            raise ConflictError("This email address is already in use.", field="email")

        now = self._clock()
        password_hash = hash_password(password)
        if existing is None:
            await self._users.create(
                email=email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                password_hash=password_hash,
                email_verified=False,
                now=now,
            )
        else:
            updated = await self._users.update_pending(
                email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                password_hash=password_hash,
                now=now,
            )
            if updated is None:
                raise ConflictError(
                    "This email address is already in use.", field="email"
                )
        log.info("registration_started", identity=hash_identity(email))
        return await self._otp.resend_code(email, Purpose.REGISTRATION)

    async def apply_verification(
        self, credential: IssuedCredential
    ) -> Optional[UserDoc]:
        """Side effects of a successful OTP verification.

        Only `registration` has one: the pending account becomes verified.
        """
        if credential.purpose != Purpose.REGISTRATION:
            return None
        user = await self._users.mark_verified(credential.identity, self._clock())
        if user is not None:
            log.info("email_verified", user_id=str(user.id))
        return user

    async def complete_registration(
        self,
        verification: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> tuple[UserDoc, IssuedCredential]:
        """Create a verified account from an email-verification credential."""
        claims = self._issuer.verify(
            verification,
            purpose=Purpose.EMAIL_VERIFICATION,
            tier=CredentialTier.INTERMEDIATE,
        )
        email = claims["email"]
        self._check_names(first_name, last_name)
        self._check_password(password)

        now = self._clock()
        password_hash = hash_password(password)
        existing = await self._users.find_by_email(email)
        if existing is not None and existing.email_verified:
            raise ConflictError("This email address is already in use.", field="email")

        if existing is None:
            user = await self._users.create(
                email=email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                password_hash=password_hash,
                email_verified=True,
                now=now,
            )
        else:
            # a pending registration for the same email is taken over
            await self._users.update_pending(
                email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                password_hash=password_hash,
                now=now,
            )
            user = await self._users.mark_verified(email, now)
            if user is None:
                raise NotFoundError("Account not found.")

        session = self._issuer.issue(
            email, Purpose.REGISTRATION, CredentialTier.SESSION, subject=str(user.id)
        )
        log.info("registration_completed", user_id=str(user.id))
        return user, session

    async def login(self, email: str, password: str) -> tuple[UserDoc, IssuedCredential]:
        email = normalize_identity(email)
        user = await self._users.find_by_email(email)
        if (
            user is None
            or not user.password_hash
            or not verify_password(password or "", user.password_hash)
        ):
            log.warning("login_failed", identity=hash_identity(email))
            raise AuthenticationError("Invalid email or password")
        if not user.email_verified:
            raise ForbiddenError("Please verify your email address first.", field="email")

        session = self._issuer.issue(
            email,
            Purpose.LOGIN_VERIFICATION,
            CredentialTier.SESSION,
            subject=str(user.id),
        )
        log.info("login_succeeded", user_id=str(user.id))
        return user, session

    async def reset_password(self, reset: str, new_password: str) -> None:
        """Set a new password using a password-reset credential.

        The credential's jti is recorded with the new password, and the write
        is conditional on it, so replaying the same credential is refused even
        within the second it was issued. A credential minted before an earlier
        password change is refused as well.
        """
        claims = self._issuer.verify(
            reset, purpose=Purpose.PASSWORD_RESET, tier=CredentialTier.INTERMEDIATE
        )
        self._check_password(new_password)
        email = claims["email"]

        user = await self._users.find_by_email(email)
        if user is None:
            raise NotFoundError("Account not found.")
        jti = claims.get("jti")
        if user.password_reset_jti is not None and user.password_reset_jti == jti:
            raise AuthenticationError("Credential has already been used")
        if (
            user.password_changed_at is not None
            and int(user.password_changed_at.timestamp()) > int(claims["iat"])
        ):
            raise AuthenticationError("Credential has already been used")

        if not await self._users.set_password(
            email, hash_password(new_password), self._clock(), reset_jti=jti
        ):
            # a concurrent reset with the same credential won the write
            if await self._users.find_by_email(email) is None:
                raise NotFoundError("Account not found.")
            raise AuthenticationError("Credential has already been used")
        log.info("password_reset_completed", user_id=str(user.id))

    async def me(self, session: str) -> UserDoc:
        claims = self._issuer.verify(
            session, purpose=SESSION_PURPOSES, tier=CredentialTier.SESSION
        )
        user = await self._users.find_by_email(claims["email"])
        if user is None:
            raise AuthenticationError("Account no longer exists")
        return user

    # ── Input checks ─────────────────────────────────────────────────────────

    @staticmethod
    def _check_email(email: str) -> str:
        email = normalize_identity(email)
        if not validate_identity(email):
            raise ValidationError("A valid email address is required", field="email")
        return email

    @staticmethod
    def _check_names(first_name: str, last_name: str) -> None:
        if not validate_name((first_name or "").strip()):
            raise ValidationError("Invalid first name", field="first_name")
        if not validate_name((last_name or "").strip()):
            raise ValidationError("Invalid last name", field="last_name")

    @staticmethod
    def _check_password(password: str) -> None:
        missing = password_requirements(password)
        if missing:
            raise ValidationError(
                "Password does not meet requirements",
                field="password",
                details={"missing_requirements": missing},
            )
