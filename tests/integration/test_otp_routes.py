"""Integration tests for the /auth/otp and /auth endpoints.

Runs the real services against the in-memory credential store and the
console notifier; only the user repository is replaced by a dict.
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

import pytest
from bson import ObjectId
from fastapi import FastAPI
from fastapi.testclient import TestClient

from config import JWTSettings, OTPSettings
from errors import register_error_handlers
from infrastructure.email.console import ConsoleNotifier
from infrastructure.otp_store.memory_store import InMemoryCredentialStore
from routes.auth_routes import router as auth_router
from routes.otp_routes import router as otp_router
from schemas.models.user import UserDoc
from services.auth_service import AuthService
from services.otp_policy import OTPPolicy
from services.otp_service import OTPService
from services.token_issuer import TokenIssuer
from shared.crypto import hash_password

os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017/")

EMAIL = "grace@example.com"
PASSWORD = "hopper1906"


class DictUsers:
    def __init__(self) -> None:
        self.users: dict[str, UserDoc] = {}

    async def find_by_email(self, email: str) -> Optional[UserDoc]:
        return self.users.get(email)

    async def create(self, *, email, first_name, last_name, password_hash, email_verified, now):
        user = UserDoc(
            _id=ObjectId(),
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash=password_hash,
            email_verified=email_verified,
            account_id="100200",
            created_at=now,
            updated_at=now,
            password_changed_at=now,
        )
        self.users[email] = user
        return user

    async def update_pending(self, email, *, first_name, last_name, password_hash, now):
        user = self.users.get(email)
        if user is None or user.email_verified:
            return None
        self.users[email] = user.model_copy(
            update={
                "first_name": first_name,
                "last_name": last_name,
                "password_hash": password_hash,
                "password_changed_at": now,
            }
        )
        return self.users[email]

    async def mark_verified(self, email, now):
        user = self.users.get(email)
        if user is None:
            return None
        self.users[email] = user.model_copy(update={"email_verified": True})
        return self.users[email]

    async def set_password(self, email, password_hash, now, *, reset_jti=None):
        user = self.users.get(email)
        if user is None:
            return False
        if reset_jti is not None and user.password_reset_jti == reset_jti:
            return False
        self.users[email] = user.model_copy(
            update={
                "password_hash": password_hash,
                "password_changed_at": now,
                "password_reset_jti": reset_jti,
            }
        )
        return True


def _build_test_app(users: DictUsers, notifier: ConsoleNotifier) -> FastAPI:
    store = InMemoryCredentialStore()
    issuer = TokenIssuer(JWTSettings(jwt_secret="integration-secret-long-enough-for-hs256"))
    otp_service = OTPService(
        store=store,
        notifier=notifier,
        users=users,
        issuer=issuer,
        policy=OTPPolicy.from_settings(OTPSettings()),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.otp_store = store
        app.state.token_issuer = issuer
        app.state.otp_service = otp_service
        app.state.auth_service = AuthService(users, otp_service, issuer)
        yield

    app = FastAPI(lifespan=lifespan)
    register_error_handlers(app)
    app.include_router(otp_router)
    app.include_router(auth_router)
    return app


@pytest.fixture
def users() -> DictUsers:
    return DictUsers()


@pytest.fixture
def notifier() -> ConsoleNotifier:
    return ConsoleNotifier()


@pytest.fixture
def client(users, notifier):
    with TestClient(_build_test_app(users, notifier)) as client:
        yield client


def _last_code(notifier: ConsoleNotifier) -> str:
    return notifier.sent[-1][1].code


def _add_verified(users: DictUsers) -> None:
    users.users[EMAIL] = UserDoc(
        _id=ObjectId(),
        email=EMAIL,
        first_name="Grace",
        last_name="Hopper",
        password_hash=hash_password(PASSWORD),
        email_verified=True,
        account_id="100201",
    )


class TestOTPRequest:
    def test_request_sends_code(self, client, notifier):
        resp = client.post(
            "/auth/otp/request", json={"email": EMAIL, "purpose": "email_verification"}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["expires_in"] == 600
        assert notifier.sent[-1][0] == EMAIL

    def test_second_request_is_already_sent(self, client):
        payload = {"email": EMAIL, "purpose": "email_verification"}
        client.post("/auth/otp/request", json=payload)
        resp = client.post("/auth/otp/request", json=payload)
        assert resp.status_code == 429
        assert resp.json()["code"] == "already_sent"
        assert int(resp.headers["Retry-After"]) > 0

    def test_resend_replaces_code(self, client, notifier):
        payload = {"email": EMAIL, "purpose": "email_verification"}
        client.post("/auth/otp/request", json=payload)
        resp = client.post("/auth/otp/resend", json=payload)
        assert resp.status_code == 200
        assert len(notifier.sent) == 2
        verify = client.post(
            "/auth/otp/verify", json={**payload, "code": _last_code(notifier)}
        )
        assert verify.status_code == 200

    def test_concealed_purpose_looks_like_a_send(self, client, notifier):
        resp = client.post(
            "/auth/otp/request", json={"email": EMAIL, "purpose": "password_reset"}
        )
        assert resp.status_code == 200
        assert resp.json()["message"] == (
            "If the address is eligible, a verification code has been sent."
        )
        assert notifier.sent == []

    def test_unknown_purpose_is_validation_error(self, client):
        resp = client.post("/auth/otp/request", json={"email": EMAIL, "purpose": "nope"})
        assert resp.status_code == 400
        assert resp.json()["field"] == "purpose"

    def test_bad_email(self, client):
        resp = client.post(
            "/auth/otp/request", json={"email": "not-an-email", "purpose": "email_verification"}
        )
        assert resp.status_code == 400
        assert resp.json()["field"] == "email"


class TestOTPVerify:
    def test_verify_returns_intermediate_credential(self, client, notifier):
        payload = {"email": EMAIL, "purpose": "email_verification"}
        client.post("/auth/otp/request", json=payload)
        resp = client.post("/auth/otp/verify", json={**payload, "code": _last_code(notifier)})
        assert resp.status_code == 200
        body = resp.json()
        assert body["tier"] == "intermediate"
        assert body["purpose"] == "email_verification"
        assert body["token_type"] == "Bearer"

    def test_wrong_code_reports_attempts_left(self, client, notifier):
        payload = {"email": EMAIL, "purpose": "email_verification"}
        client.post("/auth/otp/request", json=payload)
        wrong = "000000" if _last_code(notifier) != "000000" else "111111"
        resp = client.post("/auth/otp/verify", json={**payload, "code": wrong})
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "invalid_code"
        assert body["details"] == {"attempts_left": 2}

    def test_lockout_after_three_failures(self, client, notifier):
        payload = {"email": EMAIL, "purpose": "email_verification"}
        client.post("/auth/otp/request", json=payload)
        code = _last_code(notifier)
        wrong = "000000" if code != "000000" else "111111"
        for _ in range(2):
            client.post("/auth/otp/verify", json={**payload, "code": wrong})
        resp = client.post("/auth/otp/verify", json={**payload, "code": wrong})
        assert resp.status_code == 429
        assert resp.json()["code"] == "too_many_attempts"
        assert "Retry-After" in resp.headers
        # the right code no longer helps while locked
        resp = client.post("/auth/otp/verify", json={**payload, "code": code})
        assert resp.status_code == 429

    def test_no_code_outstanding(self, client):
        resp = client.post(
            "/auth/otp/verify",
            json={"email": EMAIL, "purpose": "email_verification", "code": "123456"},
        )
        assert resp.status_code == 404

    def test_code_is_single_use(self, client, notifier):
        payload = {"email": EMAIL, "purpose": "email_verification"}
        client.post("/auth/otp/request", json=payload)
        body = {**payload, "code": _last_code(notifier)}
        assert client.post("/auth/otp/verify", json=body).status_code == 200
        assert client.post("/auth/otp/verify", json=body).status_code == 404


class TestOTPStatus:
    def test_status_of_outstanding_code(self, client):
        client.post("/auth/otp/request", json={"email": EMAIL, "purpose": "email_verification"})
        resp = client.get(
            "/auth/otp/status", params={"email": EMAIL, "purpose": "email_verification"}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["attempts"] == 0
        assert body["attempts_left"] == 3
        assert body["locked"] is False

    def test_status_without_code(self, client):
        resp = client.get(
            "/auth/otp/status", params={"email": EMAIL, "purpose": "email_verification"}
        )
        assert resp.status_code == 404


class TestAccountFlows:
    def test_register_then_verify_then_me(self, client, notifier, users):
        resp = client.post(
            "/auth/register",
            json={
                "email": EMAIL,
                "password": PASSWORD,
                "first_name": "Grace",
                "last_name": "Hopper",
            },
        )
        assert resp.status_code == 201
        assert resp.json()["requires_verification"] is True

        resp = client.post(
            "/auth/otp/verify",
            json={"email": EMAIL, "purpose": "registration", "code": _last_code(notifier)},
        )
        assert resp.status_code == 200
        token = resp.json()["token"]
        assert users.users[EMAIL].email_verified is True

        resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["email"] == EMAIL

    def test_complete_registration(self, client, notifier):
        payload = {"email": EMAIL, "purpose": "email_verification"}
        client.post("/auth/otp/request", json=payload)
        verification = client.post(
            "/auth/otp/verify", json={**payload, "code": _last_code(notifier)}
        ).json()["token"]
        resp = client.post(
            "/auth/complete-registration",
            json={
                "verification": verification,
                "password": PASSWORD,
                "first_name": "Grace",
                "last_name": "Hopper",
            },
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["email_verified"] is True
        assert body["access_token"]

    def test_login_and_me(self, client, users):
        _add_verified(users)
        resp = client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
        assert resp.status_code == 200
        token = resp.json()["access_token"]
        resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.json()["first_name"] == "Grace"

    def test_login_wrong_password(self, client, users):
        _add_verified(users)
        resp = client.post("/auth/login", json={"email": EMAIL, "password": "wrong12345"})
        assert resp.status_code == 401

    def test_password_reset_flow(self, client, notifier, users):
        _add_verified(users)
        payload = {"email": EMAIL, "purpose": "password_reset"}
        assert client.post("/auth/otp/request", json=payload).status_code == 200
        reset = client.post(
            "/auth/otp/verify", json={**payload, "code": _last_code(notifier)}
        ).json()["token"]
        resp = client.post(
            "/auth/reset-password", json={"reset": reset, "password": "compiler1952"}
        )
        assert resp.status_code == 200
        resp = client.post("/auth/login", json={"email": EMAIL, "password": "compiler1952"})
        assert resp.status_code == 200

    def test_reset_credential_cannot_be_replayed(self, client, notifier, users):
        _add_verified(users)
        payload = {"email": EMAIL, "purpose": "password_reset"}
        client.post("/auth/otp/request", json=payload)
        reset = client.post(
            "/auth/otp/verify", json={**payload, "code": _last_code(notifier)}
        ).json()["token"]
        body = {"reset": reset, "password": "compiler1952"}
        assert client.post("/auth/reset-password", json=body).status_code == 200
        resp = client.post(
            "/auth/reset-password", json={"reset": reset, "password": "cobol19599"}
        )
        assert resp.status_code == 401
        resp = client.post("/auth/login", json={"email": EMAIL, "password": "compiler1952"})
        assert resp.status_code == 200

    def test_reset_credential_is_not_a_session(self, client, notifier, users):
        _add_verified(users)
        payload = {"email": EMAIL, "purpose": "password_reset"}
        client.post("/auth/otp/request", json=payload)
        reset = client.post(
            "/auth/otp/verify", json={**payload, "code": _last_code(notifier)}
        ).json()["token"]
        resp = client.get("/auth/me", headers={"Authorization": f"Bearer {reset}"})
        assert resp.status_code == 401

    @pytest.mark.parametrize("header", [None, "Basic abc", "Bearer"])
    def test_me_requires_bearer(self, client, header):
        headers = {"Authorization": header} if header is not None else {}
        resp = client.get("/auth/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["code"] == "authentication_error"
