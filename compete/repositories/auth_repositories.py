"""
Persistence for the external auth provider: linked accounts, sessions and
email-verification tokens. Their lifecycle belongs to the provider; these
repositories only store, look up and expire them.
"""

import logging
from typing import List, Optional

from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from compete.database.models import Collections
from compete.models.schemas import AccountSchema, SessionSchema, VerificationTokenSchema
from compete.repositories.base import BaseRepository, Document, normalize_document, to_object_id
from compete.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class AccountRepository(BaseRepository):
    collection_name = Collections.ACCOUNT
    schema = AccountSchema
    object_id_fields = ("userId",)
    conflict_message = "Ce compte est déjà lié à un utilisateur"

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            ([("provider", ASCENDING), ("providerAccountId", ASCENDING)], {"unique": True}),
            ("userId", {}),
        ])

    async def find_by_provider(self, provider: str, provider_account_id: str) -> Optional[Document]:
        return await self.find_one({"provider": provider, "providerAccountId": provider_account_id})

    async def find_by_user(self, user_id: str) -> List[Document]:
        if to_object_id(user_id) is None:
            return []
        return await self.find_many({"userId": user_id})


class SessionRepository(BaseRepository):
    collection_name = Collections.SESSION
    schema = SessionSchema
    object_id_fields = ("userId",)
    conflict_message = "Cette session existe déjà"

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            ("sessionToken", {"unique": True}),
            ("userId", {}),
            ("expires", {"expireAfterSeconds": 0}),
        ])

    async def find_by_token(self, session_token: str) -> Optional[Document]:
        return await self.find_one({"sessionToken": session_token})

    async def find_by_user(self, user_id: str) -> List[Document]:
        if to_object_id(user_id) is None:
            return []
        return await self.find_many({"userId": user_id})

    async def delete_expired(self) -> int:
        """Delete sessions whose expiry has passed. Returns the count removed."""
        return await self._delete_many({"expires": {"$lt": utcnow()}})


class VerificationTokenRepository(BaseRepository):
    collection_name = Collections.VERIFICATION_TOKEN
    schema = VerificationTokenSchema
    conflict_message = "Ce jeton de vérification existe déjà"

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            ("token", {"unique": True}),
            ([("identifier", ASCENDING), ("token", ASCENDING)], {"unique": True}),
            ("expires", {"expireAfterSeconds": 0}),
        ])

    async def find_by_token(self, token: str) -> Optional[Document]:
        return await self.find_one({"token": token})

    async def consume(self, identifier: str, token: str) -> Optional[Document]:
        """
        Use a token once: delete it and return it if it is still valid.

        Returns:
            The token, or None if unknown or expired
        """
        try:
            doc = await self.collection.find_one_and_delete({
                "identifier": identifier,
                "token": token,
                "expires": {"$gt": utcnow()},
            })
        except PyMongoError as e:
            logger.error(f"Error consuming verification token: {e}", exc_info=True)
            return None
        return normalize_document(doc)

    async def delete_expired(self) -> int:
        """Delete tokens whose expiry has passed. Returns the count removed."""
        return await self._delete_many({"expires": {"$lt": utcnow()}})
