"""Single-process CredentialStore.

Records live in a dict keyed by record_key(); each key has its own
asyncio.Lock so mutations on one (identity, purpose) pair are serialized
while unrelated keys never wait on each other. Locks are held weakly and
vanish once no coroutine uses them; the sweep also drops send-ledger
entries older than the send window. Suitable for tests and
single-worker deployments only: state is lost on restart and not shared
between processes.
"""

import asyncio
import weakref
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional

from infrastructure.otp_store.protocol import PutResult, apply_failure, can_consume
from schemas.models.otp import OTPRecord, Purpose, record_key
from shared.logging import get_logger

log = get_logger(__name__)


class InMemoryCredentialStore:
    def __init__(self, send_window_seconds: int = 3600) -> None:
        self._records: dict[str, OTPRecord] = {}
        self._issuances: dict[str, list[datetime]] = defaultdict(list)
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._send_window = timedelta(seconds=send_window_seconds)

    def _lock(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def put(self, record: OTPRecord, *, replace_active: bool = True) -> PutResult:
        key = record.key
        async with self._lock(key):
            current = self._records.get(key)
            if current is not None and current.consumed:
                current = None
            if (
                not replace_active
                and current is not None
                and current.is_active(record.issued_at)
            ):
                return PutResult(stored=False, previous=current)
            self._records[key] = record
            return PutResult(stored=True, previous=current)

    async def get(self, identity: str, purpose: Purpose) -> Optional[OTPRecord]:
        record = self._records.get(record_key(identity, purpose))
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
            record = self._records.get(key)
            if record is None or not can_consume(record, record_id, at):
                return False
            self._records[key] = record.model_copy(update={"consumed": True})
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
            record = self._records.get(key)
            if record is None or record.consumed or record.record_id != record_id:
                return None
            updated = apply_failure(
                record, at=at, max_attempts=max_attempts, lockout=lockout
            )
            self._records[key] = updated
            return updated

    async def restore(self, record: OTPRecord, previous: Optional[OTPRecord]) -> None:
        key = record.key
        async with self._lock(key):
            current = self._records.get(key)
            if current is None or current.record_id != record.record_id:
                # superseded by a newer issuance; leave it alone
                return
            if previous is not None and not previous.consumed:
                self._records[key] = previous
            else:
                del self._records[key]

    async def sweep_expired(self, now: datetime) -> int:
        removed = 0
        for key in list(self._records):
            async with self._lock(key):
                record = self._records.get(key)
                if record is not None and (record.consumed or record.is_expired(now)):
                    del self._records[key]
                    removed += 1
        self._prune_issuances(now - self._send_window)
        return removed

    def _prune_issuances(self, since: datetime) -> None:
        for key in list(self._issuances):
            recent = [sent_at for sent_at in self._issuances[key] if sent_at > since]
            if recent:
                self._issuances[key] = recent
            else:
                del self._issuances[key]

    async def log_issuance(self, identity: str, purpose: Purpose, at: datetime) -> None:
        self._issuances[record_key(identity, purpose)].append(at)

    async def count_issuances(
        self, identity: str, purpose: Purpose, since: datetime
    ) -> int:
        key = record_key(identity, purpose)
        # prune while counting so the ledger stays bounded by the window
        recent = [sent_at for sent_at in self._issuances.get(key, []) if sent_at > since]
        if recent:
            self._issuances[key] = recent
        else:
            self._issuances.pop(key, None)
        return len(recent)

    async def discard_issuance(
        self, identity: str, purpose: Purpose, at: datetime
    ) -> None:
        entries = self._issuances.get(record_key(identity, purpose))
        if entries and at in entries:
            entries.remove(at)

    async def ping(self) -> bool:
        return True
