"""
User repository: accounts, password hashing and user statistics.
"""

import asyncio
import logging
import os
import re
from typing import Any, Dict, List, Optional

import bcrypt
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from compete.database.errors import ConflictError
from compete.database.models import Collections, UserRole
from compete.models.schemas import UserSchema
from compete.repositories.base import BaseRepository, Document, to_object_id
from compete.utils.constants import BCRYPT_ROUNDS, GLOBAL_SEARCH_LIMIT, RECENT_USERS_DAYS
from compete.utils.datetime_utils import days_ago

logger = logging.getLogger(__name__)

EMAIL_TAKEN_MESSAGE = "Un utilisateur avec cet email existe déjà"
PHONE_TAKEN_MESSAGE = "Un utilisateur avec ce numéro de téléphone existe déjà"

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def hash_password(password: str) -> str:
    """Hash a password with bcrypt (cost from BCRYPT_ROUNDS, default 12)."""
    rounds = int(os.getenv("BCRYPT_ROUNDS", str(BCRYPT_ROUNDS)))
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def _is_hashed(value: str) -> bool:
    return len(value) == 60 and value.startswith(_BCRYPT_PREFIXES)


class UserRepository(BaseRepository):
    collection_name = Collections.USER
    schema = UserSchema

    # Compared against when the email is unknown so both failure paths cost a hash check
    _dummy_hash: Optional[str] = None

    def _prepare_document(self, doc: Document) -> Document:
        password = doc.get("password")
        if isinstance(password, str) and not _is_hashed(password):
            doc["password"] = hash_password(password)
        return doc

    def _conflict(self, error: DuplicateKeyError) -> ConflictError:
        key_pattern = (error.details or {}).get("keyPattern") or {}
        if "phoneNumber" in key_pattern:
            return ConflictError(PHONE_TAKEN_MESSAGE)
        return ConflictError(EMAIL_TAKEN_MESSAGE)

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            ("email", {"unique": True}),
            ("phoneNumber", {"unique": True, "sparse": True}),
            ("role", {}),
            ("country", {}),
            ([("createdAt", DESCENDING)], {}),
        ])

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_email(self, email: str) -> Optional[Document]:
        """Find a user by email (trimmed, case-insensitive)."""
        email = normalize_email(email)
        if not email:
            return None
        return await self.find_one({"email": email})

    async def find_by_phone_number(self, phone_number: str) -> Optional[Document]:
        return await self.find_one({"phoneNumber": (phone_number or "").strip()})

    async def find_by_role(self, role: str) -> List[Document]:
        return await self.find_many({"role": role}, sort=[("createdAt", DESCENDING)])

    async def find_by_country(self, country: str) -> List[Document]:
        return await self.find_many({"country": country}, sort=[("lastName", ASCENDING)])

    async def email_exists(self, email: str) -> bool:
        email = normalize_email(email)
        if not email:
            return False
        return await self.count({"email": email}) > 0

    async def search_users(
        self,
        query: str,
        exclude_user_id: Optional[str] = None,
        limit: int = GLOBAL_SEARCH_LIMIT,
    ) -> List[Document]:
        """Case-insensitive substring search on first name, last name and email."""
        pattern = {"$regex": re.escape(query.strip()), "$options": "i"}
        filter: Dict[str, Any] = {
            "$or": [{"firstName": pattern}, {"lastName": pattern}, {"email": pattern}]
        }
        excluded = to_object_id(exclude_user_id)
        if excluded is not None:
            filter["_id"] = {"$ne": excluded}
        users = await self.find_many(filter, sort=[("lastName", ASCENDING)], limit=limit)
        for user in users:
            user.pop("password", None)
        return users

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_user(self, data: Document) -> Optional[Document]:
        """
        Create a user account.

        The email is normalized and checked for uniqueness, the password is
        hashed with bcrypt and the role defaults to PARTICIPANT.

        Raises:
            ConflictError: If the email is already registered
            ValidationError: If a required field is missing
        """
        data = dict(data)
        data.setdefault("role", UserRole.PARTICIPANT.value)
        if await self.email_exists(data.get("email")):
            raise ConflictError(EMAIL_TAKEN_MESSAGE)
        return await self.create(data)

    async def update_password(self, user_id: str, new_password: str) -> bool:
        user = await self.update_by_id(user_id, {"password": new_password})
        return user is not None

    async def verify_password(self, email: str, password: str) -> Optional[Document]:
        """
        Check credentials.

        Returns:
            The user (without its hash) when the password matches; None for
            an unknown email or a wrong password alike
        """
        user = await self.find_by_email(email)
        if user is None or not user.get("password"):
            if UserRepository._dummy_hash is None:
                UserRepository._dummy_hash = await asyncio.to_thread(hash_password, "dummy-password")
            await asyncio.to_thread(check_password, password or "", UserRepository._dummy_hash)
            return None

        matches = await asyncio.to_thread(check_password, password or "", user["password"])
        if not matches:
            return None
        user.pop("password", None)
        return user

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def _group_count(self, field: str) -> Dict[str, int]:
        cursor = self.collection.aggregate([
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        ])
        rows = await cursor.to_list(length=None)
        return {row["_id"]: row["count"] for row in rows if row["_id"] is not None}

    async def get_user_stats(self) -> Dict[str, Any]:
        """
        Totals for the admin dashboard.

        Returns:
            Dict with total, byRole, byCountry and recentUsers (last 30 days);
            zeroed on error
        """
        try:
            total, by_role, by_country, recent = await asyncio.gather(
                self.collection.count_documents({}),
                self._group_count("role"),
                self._group_count("country"),
                self.collection.count_documents({"createdAt": {"$gte": days_ago(RECENT_USERS_DAYS)}}),
            )
        except Exception as e:
            logger.error(f"Error computing user stats: {e}", exc_info=True)
            return {"total": 0, "byRole": {}, "byCountry": {}, "recentUsers": 0}
        return {
            "total": total,
            "byRole": by_role,
            "byCountry": by_country,
            "recentUsers": recent,
        }
