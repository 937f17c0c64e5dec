"""Redis CredentialStore.

Each (identity, purpose) record is a JSON string under ``otp:<key>``.
Mutations on one key run under a Redis lock (``otp_lock:<key>``), so
read-modify-write sequences stay atomic across worker processes without
serializing unrelated keys.

Expired records are dropped by Redis itself: the key TTL is the record's
expires_at plus a retention window, during which a late verify still gets
a precise "expired" answer. sweep_expired() therefore has nothing to do.

The send ledger is a sorted set ``otp_sends:<key>`` scored by send time.
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from infrastructure.otp_store.protocol import PutResult, apply_failure, can_consume
from schemas.models.otp import OTPRecord, Purpose, record_key
from shared.logging import get_logger

log = get_logger(__name__)


class RedisCredentialStore:
    def __init__(
        self,
        redis_client: aioredis.Redis,
        *,
        retention_seconds: int = 300,
        send_window_seconds: int = 3600,
        lock_timeout: float = 5.0,
    ) -> None:
        self._redis = redis_client
        self.retention_seconds = retention_seconds
        self.send_window_seconds = send_window_seconds
        self.lock_timeout = lock_timeout

    def _record_key(self, key: str) -> str:
        return f"otp:{key}"

    def _lock_key(self, key: str) -> str:
        return f"otp_lock:{key}"

    def _sends_key(self, key: str) -> str:
        return f"otp_sends:{key}"

    def _lock(self, key: str):
        return self._redis.lock(
            self._lock_key(key),
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout,
        )

    async def _load(self, key: str) -> Optional[OTPRecord]:
        raw = await self._redis.get(self._record_key(key))
        if raw is None:
            return None
        return OTPRecord.model_validate_json(raw)

    async def _save(self, record: OTPRecord) -> None:
        drop_at = record.expires_at + timedelta(seconds=self.retention_seconds)
        await self._redis.set(
            self._record_key(record.key),
            record.model_dump_json(),
            pxat=int(drop_at.timestamp() * 1000),
        )

    async def put(self, record: OTPRecord, *, replace_active: bool = True) -> PutResult:
        async with self._lock(record.key):
            current = await self._load(record.key)
            if current is not None and current.consumed:
                current = None
            if (
                not replace_active
                and current is not None
                and current.is_active(record.issued_at)
            ):
                return PutResult(stored=False, previous=current)
            await self._save(record)
            return PutResult(stored=True, previous=current)

    async def get(self, identity: str, purpose: Purpose) -> Optional[OTPRecord]:
        record = await self._load(record_key(identity, purpose))
        if record is None or record.consumed:
            return None
        return record

    async def consume(
        self,
        identity: str,
        purpose: Purpose,
        record_id: Optional[str] = None,
        *,
        at: Optional[datetime] = None,
    ) -> bool:
        key = record_key(identity, purpose)
        async with self._lock(key):
            record = await self._load(key)
            if record is None or not can_consume(record, record_id, at):
                return False
            await self._save(record.model_copy(update={"consumed": True}))
            return True

    async def record_failure(
        self,
        identity: str,
        purpose: Purpose,
        record_id: str,
        *,
        at: datetime,
        max_attempts: int,
        lockout: timedelta,
    ) -> Optional[OTPRecord]:
        key = record_key(identity, purpose)
        async with self._lock(key):
            record = await self._load(key)
            if record is None or record.consumed or record.record_id != record_id:
                return None
            updated = apply_failure(
                record, at=at, max_attempts=max_attempts, lockout=lockout
            )
            if updated is not record:
                await self._save(updated)
            return updated

    async def restore(self, record: OTPRecord, previous: Optional[OTPRecord]) -> None:
        async with self._lock(record.key):
            current = await self._load(record.key)
            if current is None or current.record_id != record.record_id:
                return
            if previous is not None and not previous.consumed:
                await self._save(previous)
            else:
                await self._redis.delete(self._record_key(record.key))

    async def sweep_expired(self, now: datetime) -> int:
        # key TTLs do the sweeping
        return 0

    async def log_issuance(self, identity: str, purpose: Purpose, at: datetime) -> None:
        sends_key = self._sends_key(record_key(identity, purpose))
        # members must be unique even for sends within the same instant
        member = f"{at.isoformat()}#{secrets.token_hex(4)}"
        await self._redis.zadd(sends_key, {member: at.timestamp()})
        await self._redis.expire(sends_key, self.send_window_seconds)

    async def count_issuances(
        self, identity: str, purpose: Purpose, since: datetime
    ) -> int:
        sends_key = self._sends_key(record_key(identity, purpose))
        await self._redis.zremrangebyscore(sends_key, "-inf", since.timestamp())
        return await self._redis.zcard(sends_key)

    async def discard_issuance(
        self, identity: str, purpose: Purpose, at: datetime
    ) -> None:
        sends_key = self._sends_key(record_key(identity, purpose))
        score = at.timestamp()
        members = await self._redis.zrangebyscore(sends_key, score, score, start=0, num=1)
        if members:
            await self._redis.zrem(sends_key, members[0])

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            log.warning("otp_store_ping_failed", backend="redis", error=str(e))
            return False
