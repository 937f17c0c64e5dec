"""Builds the configured CredentialStore backend."""

from typing import Any, Optional

import redis.asyncio as aioredis

from config import OTPSettings
from infrastructure.otp_store.memory_store import InMemoryCredentialStore
from infrastructure.otp_store.mongo_store import MongoCredentialStore
from infrastructure.otp_store.protocol import CredentialStore
from infrastructure.otp_store.redis_store import RedisCredentialStore
from shared.logging import get_logger

log = get_logger(__name__)


def build_credential_store(
    settings: OTPSettings,
    db: Any = None,
    redis_client: Optional[aioredis.Redis] = None,
) -> CredentialStore:
    backend = settings.otp_store_backend
    if backend == "redis":
        if redis_client is None:
            raise RuntimeError("OTP_STORE_BACKEND=redis requires a Redis connection")
        store: CredentialStore = RedisCredentialStore(
            redis_client,
            retention_seconds=int(settings.otp_sweep_interval_seconds),
            send_window_seconds=settings.otp_send_window_seconds,
        )
    elif backend == "mongo":
        if db is None:
            raise RuntimeError("OTP_STORE_BACKEND=mongo requires a database handle")
        store = MongoCredentialStore(
            db, send_window_seconds=settings.otp_send_window_seconds
        )
    else:
        store = InMemoryCredentialStore(
            send_window_seconds=settings.otp_send_window_seconds
        )
    log.info("otp_store_selected", backend=backend)
    return store
