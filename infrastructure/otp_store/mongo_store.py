"""MongoDB CredentialStore.

One document per (identity, purpose) in `otp-records`, with the store key as
``_id`` so MongoDB's primary-key uniqueness is what guarantees a single
current record per key:

- put(replace_active=False) is an upsert whose filter only matches a
  replaceable document; an active document makes the upsert collide on
  ``_id`` (DuplicateKeyError) and the write is refused.
- consume / restore are single conditional writes filtered on record_id.
- record_failure is a compare-and-swap on (record_id, attempts, locked_until),
  retried on contention.

The send ledger lives in `otp-sends` with a TTL index on sent_at.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from infrastructure.otp_store.protocol import PutResult, apply_failure
from schemas.models.otp import OTPRecord, Purpose, record_key
from shared.logging import get_logger

log = get_logger(__name__)

RECORDS_COLLECTION = "otp-records"
SENDS_COLLECTION = "otp-sends"

_MAX_CAS_RETRIES = 5


class StoreContentionError(RuntimeError):
    """A compare-and-swap kept losing to concurrent writers."""


def _to_ms(at: datetime) -> datetime:
    # BSON dates carry millisecond precision; equality filters need the same
    return at.replace(microsecond=(at.microsecond // 1000) * 1000)


class MongoCredentialStore:
    def __init__(self, db: Any, send_window_seconds: int = 3600) -> None:
        self._records = db[RECORDS_COLLECTION]
        self._sends = db[SENDS_COLLECTION]
        self._db = db
        self._send_window_seconds = send_window_seconds

    async def ensure_indexes(self) -> None:
        await self._records.create_index([("expires_at", ASCENDING)])
        await self._sends.create_index([("key", ASCENDING), ("sent_at", ASCENDING)])
        await self._sends.create_index(
            [("sent_at", ASCENDING)],
            expireAfterSeconds=self._send_window_seconds,
            name="sent_at_ttl",
        )

    async def put(self, record: OTPRecord, *, replace_active: bool = True) -> PutResult:
        doc = record.to_document()
        if replace_active:
            before = await self._records.find_one_and_replace(
                {"_id": record.key},
                doc,
                upsert=True,
                return_document=ReturnDocument.BEFORE,
            )
            previous = OTPRecord.from_document(before)
            if previous is not None and previous.consumed:
                previous = None
            return PutResult(stored=True, previous=previous)

        replaceable = {
            "_id": record.key,
            "$or": [
                {"consumed": True},
                {"expires_at": {"$lte": record.issued_at}},
            ],
        }
        try:
            before = await self._records.find_one_and_replace(
                replaceable,
                doc,
                upsert=True,
                return_document=ReturnDocument.BEFORE,
            )
        except DuplicateKeyError:
            current = OTPRecord.from_document(
                await self._records.find_one({"_id": record.key})
            )
            return PutResult(stored=False, previous=current)
        previous = OTPRecord.from_document(before)
        if previous is not None and previous.consumed:
            previous = None
        return PutResult(stored=True, previous=previous)

    async def get(self, identity: str, purpose: Purpose) -> Optional[OTPRecord]:
        doc = await self._records.find_one(
            {"_id": record_key(identity, purpose), "consumed": False}
        )
        return OTPRecord.from_document(doc)

    async def consume(
        self,
        identity: str,
        purpose: Purpose,
        record_id: Optional[str] = None,
        *,
        at: Optional[datetime] = None,
    ) -> bool:
        query: dict = {"_id": record_key(identity, purpose), "consumed": False}
        if record_id is not None:
            query["record_id"] = record_id
        if at is not None:
            query["expires_at"] = {"$gt": at}
            query["$or"] = [{"locked_until": None}, {"locked_until": {"$lte": at}}]
        result = await self._records.update_one(query, {"$set": {"consumed": True}})
        return result.modified_count == 1

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
        for _ in range(_MAX_CAS_RETRIES):
            current = OTPRecord.from_document(
                await self._records.find_one(
                    {"_id": key, "record_id": record_id, "consumed": False}
                )
            )
            if current is None:
                return None
            updated = apply_failure(
                current, at=at, max_attempts=max_attempts, lockout=lockout
            )
            if updated is current:
                return current
            after = await self._records.find_one_and_update(
                {
                    "_id": key,
                    "record_id": record_id,
                    "consumed": False,
                    "attempts": current.attempts,
                    "locked_until": current.locked_until,
                },
                {
                    "$set": {
                        "attempts": updated.attempts,
                        "locked_until": updated.locked_until,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
            if after is not None:
                return OTPRecord.from_document(after)
            log.debug("otp_store_cas_retry", purpose=Purpose(purpose).value)
        raise StoreContentionError(f"attempt counter contention on {Purpose(purpose).value}")

    async def restore(self, record: OTPRecord, previous: Optional[OTPRecord]) -> None:
        query = {"_id": record.key, "record_id": record.record_id}
        if previous is not None and not previous.consumed:
            await self._records.find_one_and_replace(query, previous.to_document())
        else:
            await self._records.delete_one(query)

    async def sweep_expired(self, now: datetime) -> int:
        result = await self._records.delete_many(
            {"$or": [{"expires_at": {"$lte": now}}, {"consumed": True}]}
        )
        return result.deleted_count

    async def log_issuance(self, identity: str, purpose: Purpose, at: datetime) -> None:
        await self._sends.insert_one(
            {"key": record_key(identity, purpose), "sent_at": _to_ms(at)}
        )

    async def count_issuances(
        self, identity: str, purpose: Purpose, since: datetime
    ) -> int:
        return await self._sends.count_documents(
            {"key": record_key(identity, purpose), "sent_at": {"$gt": since}}
        )

    async def discard_issuance(
        self, identity: str, purpose: Purpose, at: datetime
    ) -> None:
        await self._sends.delete_one(
            {"key": record_key(identity, purpose), "sent_at": _to_ms(at)}
        )

    async def ping(self) -> bool:
        try:
            await self._db.command("ping")
            return True
        except Exception as e:
            log.warning("otp_store_ping_failed", backend="mongo", error=str(e))
            return False
