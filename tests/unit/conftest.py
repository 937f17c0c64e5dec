"""
Unit test configuration.

Patches dotenv so pydantic-settings never reads the project's real .env file
during unit tests. Tests control config exclusively through monkeypatch.setenv().

Also provides the building blocks for OTP lifecycle tests: a controllable
clock, the in-memory credential store, a fake user directory and a
recording notifier.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from config import JWTSettings, OTPSettings
from infrastructure.email.protocol import OTPDelivery
from infrastructure.otp_store.memory_store import InMemoryCredentialStore
from schemas.models.otp import Purpose
from schemas.models.user import UserDoc
from services.otp_policy import OTPPolicy
from services.otp_service import OTPService
from services.token_issuer import TokenIssuer

TEST_JWT_SECRET = "unit-test-secret-that-is-long-enough-for-hs256"


@pytest.fixture(autouse=True)
def disable_dotenv_loading(monkeypatch):
    """Prevent pydantic-settings from loading .env files in all unit tests."""
    import pydantic_settings.sources.providers.dotenv as ps_dotenv

    monkeypatch.setattr(ps_dotenv, "dotenv_values", lambda *a, **kw: {})


class FakeClock:
    """Callable clock that only moves when told to.

    Starts at the real current time (truncated to the second) so JWTs
    minted against it still pass PyJWT's wall-clock checks.
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


class FakeUsers:
    """In-memory stand-in for UserRepository.find_by_email()."""

    def __init__(self) -> None:
        self.by_email: dict[str, UserDoc] = {}

    def add(self, email: str, *, verified: bool = True, first_name: str = "Ada") -> UserDoc:
        user = UserDoc(
            email=email,
            first_name=first_name,
            last_name="Lovelace",
            password_hash=None,
            email_verified=verified,
            account_id="123456",
        )
        self.by_email[email] = user
        return user

    async def find_by_email(self, email: str) -> Optional[UserDoc]:
        return self.by_email.get(email)


class RecordingNotifier:
    """Notifier that remembers every payload; can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, OTPDelivery]] = []
        self.fail = False
        self.error: Optional[Exception] = None

    async def deliver(self, identity: str, payload: OTPDelivery) -> bool:
        if self.error is not None:
            raise self.error
        if self.fail:
            return False
        self.sent.append((identity, payload))
        return True

    def last_code(self, identity: Optional[str] = None, purpose: Optional[Purpose] = None) -> str:
        for sent_to, payload in reversed(self.sent):
            if identity is not None and sent_to != identity:
                continue
            if purpose is not None and payload.purpose != purpose:
                continue
            return payload.code
        raise AssertionError("no code delivered")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def users() -> FakeUsers:
    return FakeUsers()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def jwt_settings() -> JWTSettings:
    return JWTSettings(jwt_secret=TEST_JWT_SECRET)


@pytest.fixture
def issuer(jwt_settings, clock) -> TokenIssuer:
    return TokenIssuer(jwt_settings, clock=clock)


@pytest.fixture
def policy() -> OTPPolicy:
    return OTPPolicy.from_settings(OTPSettings())


@pytest.fixture
def otp_service(store, notifier, users, issuer, policy, clock) -> OTPService:
    return OTPService(
        store=store,
        notifier=notifier,
        users=users,
        issuer=issuer,
        policy=policy,
        clock=clock,
    )
