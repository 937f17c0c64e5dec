"""
Async repository for the `users` collection.

The OTP lifecycle only needs find_by_email() (the identity lookup); the
account flows in services/auth_service.py use the rest.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from errors import ConflictError
from schemas.models.user import UserDoc
from shared.generators import generate_account_id
from shared.logging import get_logger, hash_identity

log = get_logger(__name__)

USERS_COLLECTION = "users"

_MAX_ACCOUNT_ID_ATTEMPTS = 5


class UserRepository:
    def __init__(self, db: Any) -> None:
        self._col = db[USERS_COLLECTION]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("email", ASCENDING)], unique=True)
        await self._col.create_index([("account_id", ASCENDING)], unique=True)

    async def find_by_email(self, email: str) -> Optional[UserDoc]:
        return UserDoc.from_mongo(await self._col.find_one({"email": email}))

    async def create(
        self,
        *,
        email: str,
        first_name: str,
        last_name: str,
        password_hash: str,
        email_verified: bool,
        now: datetime,
    ) -> UserDoc:
        """Insert a new user with a unique 6-digit account id.

        Raises:
            ConflictError: the email is already registered.
        """
        for _ in range(_MAX_ACCOUNT_ID_ATTEMPTS):
            user = UserDoc(
                email=email,
                first_name=first_name,
                last_name=last_name,
                password_hash=password_hash,
                email_verified=email_verified,
                account_id=generate_account_id(),
                created_at=now,
                updated_at=now,
                password_changed_at=now,
            )
            try:
                result = await self._col.insert_one(user.to_mongo())
            except DuplicateKeyError as e:
                if "email" in str(e):
                    raise ConflictError(
                        "This email address is already in use.", field="email"
                    ) from e
                log.debug("account_id_collision", attempt_account_id=user.account_id)
                continue
            user.id = result.inserted_id
            log.info(
                "user_created",
                user_id=str(result.inserted_id),
                identity=hash_identity(email),
                email_verified=email_verified,
            )
            return user
        raise RuntimeError("could not allocate a unique account id")

    async def update_pending(
        self,
        email: str,
        *,
        first_name: str,
        last_name: str,
        password_hash: str,
        now: datetime,
    ) -> Optional[UserDoc]:
        """Refresh the details of an unverified account; None if not pending."""
        doc = await self._col.find_one_and_update(
            {"email": email, "email_verified": False},
            {
                "$set": {
                    "first_name": first_name,
                    "last_name": last_name,
                    "password_hash": password_hash,
                    "password_changed_at": now,
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        return UserDoc.from_mongo(doc)

    async def mark_verified(self, email: str, now: datetime) -> Optional[UserDoc]:
        doc = await self._col.find_one_and_update(
            {"email": email},
            {"$set": {"email_verified": True, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return UserDoc.from_mongo(doc)

    async def set_password(
        self,
        email: str,
        password_hash: str,
        now: datetime,
        *,
        reset_jti: Optional[str] = None,
    ) -> bool:
        """Store a new password hash.

        With *reset_jti* the write only matches when that credential has not
        already set the password, so a replayed reset matches nothing.
        """
        query: dict = {"email": email}
        fields: dict = {
            "password_hash": password_hash,
            "password_changed_at": now,
            "updated_at": now,
        }
        if reset_jti is not None:
            query["password_reset_jti"] = {"$ne": reset_jti}
            fields["password_reset_jti"] = reset_jti
        result = await self._col.update_one(query, {"$set": fields})
        return result.matched_count == 1
