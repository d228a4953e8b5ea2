"""
Notification repository.

``relatedType``/``relatedId`` point at any other record; they are stored as
given and resolved by the caller. Expired notifications (``expiresAt``) are
purged by a TTL index; read notifications are purged by age in cleanup.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from compete.database.models import Collections
from compete.models.schemas import NotificationSchema
from compete.repositories.base import BaseRepository, Document, to_object_id
from compete.utils.constants import NOTIFICATION_RETENTION_DAYS
from compete.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class NotificationRepository(BaseRepository):
    collection_name = Collections.NOTIFICATION
    schema = NotificationSchema
    object_id_fields = ("userId",)

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            ([("userId", ASCENDING), ("isRead", ASCENDING)], {}),
            ([("userId", ASCENDING), ("createdAt", DESCENDING)], {}),
            ("category", {}),
            ([("relatedType", ASCENDING), ("relatedId", ASCENDING)], {}),
            ("expiresAt", {"expireAfterSeconds": 0}),
        ])

    @staticmethod
    def _unread(data: Document) -> Document:
        data = dict(data)
        data["isRead"] = False
        data.pop("readAt", None)
        return data

    async def create_notification(self, data: Document) -> Optional[Document]:
        """Create a notification; it always starts unread."""
        return await self.create(self._unread(data))

    async def create_bulk_notifications(self, user_ids: Iterable[str], data: Document) -> int:
        """
        Send the same notification to several users.

        Returns:
            Number of notifications inserted

        Raises:
            ValidationError: If the notification payload is invalid
        """
        documents = [
            self._prepare_create({**self._unread(data), "userId": user_id})
            for user_id in dict.fromkeys(user_ids)
        ]
        if not documents:
            return 0
        try:
            result = await self.collection.insert_many(documents)
        except PyMongoError as e:
            logger.error(f"Bulk notification insert failed: {e}", exc_info=True)
            return 0
        return len(result.inserted_ids)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_user(
        self, user_id: str, unread_only: bool = False, limit: int = 50, skip: int = 0
    ) -> List[Document]:
        if to_object_id(user_id) is None:
            return []
        filter: Dict[str, Any] = {"userId": user_id}
        if unread_only:
            filter["isRead"] = False
        return await self.find_many(filter, sort=[("createdAt", DESCENDING)], limit=limit, skip=skip)

    async def find_by_category(self, user_id: str, category: str) -> List[Document]:
        if to_object_id(user_id) is None:
            return []
        return await self.find_many(
            {"userId": user_id, "category": category}, sort=[("createdAt", DESCENDING)]
        )

    async def find_by_related(self, related_type: str, related_id: str) -> List[Document]:
        return await self.find_many(
            {"relatedType": related_type, "relatedId": str(related_id)},
            sort=[("createdAt", DESCENDING)],
        )

    async def get_unread_count(self, user_id: str) -> int:
        if to_object_id(user_id) is None:
            return 0
        return await self.count({"userId": user_id, "isRead": False})

    # ------------------------------------------------------------------
    # Read state
    # ------------------------------------------------------------------

    async def mark_as_read(self, notification_id: str, user_id: Optional[str] = None) -> Optional[Document]:
        """
        Mark one notification read.

        Args:
            notification_id: Notification to mark
            user_id: When given, only matches a notification of this user
        """
        object_id = to_object_id(notification_id)
        if object_id is None:
            return None
        query: Dict[str, Any] = {"_id": object_id}
        if user_id is not None:
            query["userId"] = to_object_id(user_id)
        return await self._update_where(query, {"$set": {"isRead": True, "readAt": utcnow()}})

    async def mark_all_as_read(self, user_id: str) -> int:
        """Mark every unread notification of the user read. Returns how many changed."""
        if to_object_id(user_id) is None:
            return 0
        return await self._update_many(
            {"userId": user_id, "isRead": False}, {"isRead": True, "readAt": utcnow()}
        )

    async def delete_old_notifications(self, days_old: int = NOTIFICATION_RETENTION_DAYS) -> int:
        """
        Delete read notifications created more than ``days_old`` days ago.

        Unread notifications are kept whatever their age.

        Returns:
            Number of notifications deleted
        """
        cutoff = utcnow() - timedelta(days=days_old)
        return await self._delete_many({"isRead": True, "createdAt": {"$lt": cutoff}})

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def _group_count(self, match: Document, field: str) -> Dict[str, int]:
        cursor = self.collection.aggregate([
            {"$match": match},
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        ])
        rows = await cursor.to_list(length=None)
        return {row["_id"]: row["count"] for row in rows if row["_id"] is not None}

    async def get_notification_stats(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Returns:
            Dict with total, unread, byType and byCategory; zeroed on error
        """
        empty = {"total": 0, "unread": 0, "byType": {}, "byCategory": {}}
        match: Dict[str, Any] = {}
        if user_id is not None:
            object_id = to_object_id(user_id)
            if object_id is None:
                return empty
            match["userId"] = object_id
        try:
            total, unread, by_type, by_category = await asyncio.gather(
                self.collection.count_documents(match),
                self.collection.count_documents({**match, "isRead": False}),
                self._group_count(match, "type"),
                self._group_count(match, "category"),
            )
        except Exception as e:
            logger.error(f"Error computing notification stats: {e}", exc_info=True)
            return empty
        return {"total": total, "unread": unread, "byType": by_type, "byCategory": by_category}
