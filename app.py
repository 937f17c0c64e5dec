"""
FastAPI application factory.
create_app() is the single entry point for building the app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.asynchronous.mongo_client import AsyncMongoClient

from config import AppSettings
from errors import register_error_handlers
from infrastructure.email.console import ConsoleNotifier
from infrastructure.email.protocol import Notifier
from infrastructure.email.zeptomail import ZeptoMailProvider
from infrastructure.http_client import HttpClient
from infrastructure.otp_store.factory import build_credential_store
from infrastructure.redis_client import create_redis_client
from repositories.user_repository import UserRepository
from routes.auth_routes import router as auth_router
from routes.health_routes import router as health_router
from routes.otp_routes import router as otp_router
from services.auth_service import AuthService
from services.otp_policy import OTPPolicy
from services.otp_service import OTPService
from services.otp_sweeper import ExpirySweeper
from services.token_issuer import TokenIssuer
from shared.logging import get_logger, setup_logging

log = get_logger(__name__)


def build_notifier(settings: AppSettings, http_client: HttpClient) -> Notifier:
    if settings.email.email_backend == "console":
        if settings.is_production:
            raise RuntimeError("EMAIL_BACKEND=console is not allowed in production")
        return ConsoleNotifier()
    return ZeptoMailProvider(
        settings.email,
        http_client,
        app_name=settings.app_name,
        app_url=settings.app_url,
    )


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if settings is None:
        settings = AppSettings()

    setup_logging(
        settings.logging.log_level,
        settings.logging.log_format,
        hash_identities=settings.is_production,
        sentry_enabled=bool(settings.sentry.sentry_dsn),
    )

    # Initialise Sentry before anything else so it captures startup errors
    if settings.sentry.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry.sentry_dsn,
            send_default_pii=settings.sentry.sentry_send_pii,
            traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
            environment=settings.env,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        mongo_client: AsyncMongoClient = AsyncMongoClient(settings.db.mongodb_uri)
        app.state.mongo_client = mongo_client
        app.state.db = mongo_client[settings.db.db_name]

        # Redis is optional unless it backs the credential store
        redis_client = None
        if settings.redis.redis_uri:
            redis_client = await create_redis_client(settings.redis.redis_uri)
        app.state.redis = redis_client

        store = build_credential_store(settings.otp, app.state.db, redis_client)
        if hasattr(store, "ensure_indexes"):
            await store.ensure_indexes()
        app.state.otp_store = store

        users = UserRepository(app.state.db)
        await users.ensure_indexes()

        http_client = HttpClient(timeout=settings.otp.otp_delivery_timeout_seconds)
        issuer = TokenIssuer(settings.jwt)
        otp_service = OTPService(
            store=store,
            notifier=build_notifier(settings, http_client),
            users=users,
            issuer=issuer,
            policy=OTPPolicy.from_settings(settings.otp),
        )
        app.state.token_issuer = issuer
        app.state.otp_service = otp_service
        app.state.auth_service = AuthService(users, otp_service, issuer)

        sweeper = ExpirySweeper(store, settings.otp.otp_sweep_interval_seconds)
        sweeper.start()
        app.state.sweeper = sweeper

        log.info("app_started", env=settings.env, store_backend=settings.otp.otp_store_backend)

        yield

        # ── Shutdown ─────────────────────────────────────────────────────────
        await sweeper.stop()
        await http_client.aclose()
        await mongo_client.close()
        if redis_client is not None:
            await redis_client.aclose()

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(otp_router)
    app.include_router(auth_router)

    return app
