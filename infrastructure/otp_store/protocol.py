"""CredentialStore protocol. The OTP lifecycle depends on this, not a backend.

Atomicity contract (every backend):
- put / consume / record_failure / restore are linearizable per
  (identity, purpose) key; unrelated keys never contend.
- consume returns True for exactly one caller per record.
- record_failure never loses an increment to a stale read.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol, runtime_checkable

from schemas.models.otp import OTPRecord, Purpose


@dataclass(frozen=True)
class PutResult:
    """Outcome of CredentialStore.put().

    stored   — True when the new record became the current one.
    previous — the record it replaced, or (when stored is False) the active
               record that blocked the write.
    """

    stored: bool
    previous: Optional[OTPRecord] = None


@runtime_checkable
class CredentialStore(Protocol):
    async def put(
        self, record: OTPRecord, *, replace_active: bool = True
    ) -> PutResult: ...

    async def get(self, identity: str, purpose: Purpose) -> Optional[OTPRecord]: ...

    async def consume(
        self,
        identity: str,
        purpose: Purpose,
        record_id: Optional[str] = None,
        *,
        at: Optional[datetime] = None,
    ) -> bool: ...

    async def record_failure(
        self,
        identity: str,
        purpose: Purpose,
        record_id: str,
        *,
        at: datetime,
        max_attempts: int,
        lockout: timedelta,
    ) -> Optional[OTPRecord]: ...

    async def restore(
        self, record: OTPRecord, previous: Optional[OTPRecord]
    ) -> None: ...

    async def sweep_expired(self, now: datetime) -> int: ...

    async def log_issuance(
        self, identity: str, purpose: Purpose, at: datetime
    ) -> None: ...

    async def count_issuances(
        self, identity: str, purpose: Purpose, since: datetime
    ) -> int: ...

    async def discard_issuance(
        self, identity: str, purpose: Purpose, at: datetime
    ) -> None: ...

    async def ping(self) -> bool: ...


def apply_failure(
    record: OTPRecord, *, at: datetime, max_attempts: int, lockout: timedelta
) -> OTPRecord:
    """Return *record* with one more failed attempt applied.

    Shared by the backends that mutate under a per-key lock:
    - already locked: unchanged
    - lapsed lock: the counter restarts before counting this failure
    - reaching max_attempts: locked_until = at + lockout
    """
    if record.is_locked(at):
        return record
    attempts = record.attempts
    if record.locked_until is not None:
        attempts = 0
    attempts += 1
    locked_until = at + lockout if attempts >= max_attempts else None
    return record.model_copy(
        update={"attempts": min(attempts, max_attempts), "locked_until": locked_until}
    )


def can_consume(record: OTPRecord, record_id: Optional[str], at: Optional[datetime]) -> bool:
    """Whether a consume request may transition *record*."""
    if record.consumed:
        return False
    if record_id is not None and record.record_id != record_id:
        return False
    if at is not None and (record.is_expired(at) or record.is_locked(at)):
        return False
    return True
