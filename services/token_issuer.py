"""
Stateless, purpose-scoped JWT issuer.

A credential embeds its purpose and tier; verify() refuses a token minted
for any other purpose or tier, so a password-reset credential can never be
replayed as a session. Validation needs only the key material, never a
store lookup.

RS256 is used when both keys are configured, HS256 with JWT_SECRET otherwise.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Union

import jwt

from config import JWTSettings
from errors import AuthenticationError
from schemas.models.credential import CredentialTier, IssuedCredential
from schemas.models.otp import Purpose
from shared.datetime_utils import Clock, utcnow
from shared.generators import generate_secure_token
from shared.logging import get_logger

log = get_logger(__name__)


class TokenIssuer:
    def __init__(self, settings: JWTSettings, clock: Clock = utcnow) -> None:
        self._settings = settings
        self._clock = clock
        if settings.use_rs256:
            # Support keys provided via env with literal \n sequences
            self._signing_key: Any = settings.jwt_private_key.replace("\\n", "\n")
            self._verify_key: Any = settings.jwt_public_key.replace("\\n", "\n")
            self._algorithm = "RS256"
        else:
            if not settings.jwt_secret:
                raise RuntimeError(
                    "JWT_SECRET must be set when RS256 keys are not provided"
                )
            self._signing_key = self._verify_key = settings.jwt_secret
            self._algorithm = "HS256"
        self._ttls = {
            CredentialTier.INTERMEDIATE: timedelta(
                seconds=settings.intermediate_token_ttl_seconds
            ),
            CredentialTier.SESSION: timedelta(seconds=settings.session_token_ttl_seconds),
        }

    def issue(
        self,
        identity: str,
        purpose: Purpose,
        tier: CredentialTier,
        *,
        subject: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> IssuedCredential:
        """Mint a credential for *identity* scoped to *purpose*.

        *subject* defaults to the identity; session credentials for an
        existing account pass the user id instead.
        """
        issued_at = (now or self._clock()).replace(microsecond=0)
        expires_at = issued_at + self._ttls[CredentialTier(tier)]
        claims = {
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "sub": subject or identity,
            "email": identity,
            "purpose": Purpose(purpose).value,
            "tier": CredentialTier(tier).value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": generate_secure_token(16),
        }
        token = jwt.encode(claims, self._signing_key, algorithm=self._algorithm)
        return IssuedCredential(
            token=token,
            identity=identity,
            purpose=purpose,
            tier=tier,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def verify(
        self,
        token: str,
        *,
        purpose: Union[Purpose, Iterable[Purpose]],
        tier: Optional[CredentialTier] = None,
    ) -> dict:
        """Decode *token* and check its purpose (and tier when given).

        *purpose* may be a single purpose or several accepted ones (session
        credentials are minted by more than one flow).

        Raises:
            AuthenticationError: bad signature, expired, wrong audience/issuer,
                or a purpose/tier other than the one required.
        """
        try:
            claims = jwt.decode(
                token,
                self._verify_key,
                algorithms=[self._algorithm],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
                options={"require": ["exp", "iat", "sub", "purpose", "tier"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Credential has expired") from e
        except jwt.InvalidTokenError as e:
            log.warning("credential_rejected", reason=type(e).__name__)
            raise AuthenticationError("Invalid credential") from e

        if isinstance(purpose, Purpose):
            accepted = {purpose.value}
        else:
            accepted = {Purpose(p).value for p in purpose}
        if claims.get("purpose") not in accepted:
            log.warning(
                "credential_rejected",
                reason="purpose_mismatch",
                expected=sorted(accepted),
                actual=claims.get("purpose"),
            )
            raise AuthenticationError("Credential is not valid for this action")
        if tier is not None and claims.get("tier") != CredentialTier(tier).value:
            log.warning("credential_rejected", reason="tier_mismatch")
            raise AuthenticationError("Credential is not valid for this action")
        return claims
