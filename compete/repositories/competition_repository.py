"""
Competition repository: invitation codes, public listing and organizer views.
"""

import asyncio
import logging
import math
import re
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, TEXT

from compete.database import validation
from compete.database.errors import ConflictError
from compete.database.models import (
    ACTIVE_COMPETITION_STATUSES,
    APPROVED_PARTICIPATION_STATUSES,
    Collections,
)
from compete.models.schemas import CompetitionSchema
from compete.repositories.base import BaseRepository, Document, to_object_id
from compete.utils.codes import generate_unique_code, normalize_code
from compete.utils.constants import DEFAULT_PAGE_SIZE, GLOBAL_SEARCH_LIMIT, UNIQUE_CODE_MAX_ATTEMPTS

logger = logging.getLogger(__name__)

# Fields taking part in cross-field rules; updates touching them are checked
# against the merged document
_RULE_FIELDS = {
    "startDate",
    "endDate",
    "registrationStartDate",
    "registrationDeadline",
    "minParticipants",
    "maxParticipants",
    "status",
}


def _search_pattern(text: str) -> Dict[str, str]:
    return {"$regex": re.escape(text.strip()), "$options": "i"}


class CompetitionRepository(BaseRepository):
    collection_name = Collections.COMPETITION
    schema = CompetitionSchema
    object_id_fields = ("organizerId",)
    immutable_fields = ("id", "_id", "createdAt", "uniqueCode")
    conflict_message = "Ce code d'invitation est déjà utilisé"

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            ("uniqueCode", {"unique": True, "sparse": True}),
            ("organizerId", {}),
            ("status", {}),
            ("category", {}),
            ("country", {}),
            ([("isPublic", ASCENDING), ("startDate", ASCENDING)], {}),
            ([("name", TEXT), ("description", TEXT)], {"name": "competition_text"}),
        ])

    async def create(self, data: Document, session=None) -> Optional[Document]:
        """
        Create a competition with a freshly generated invitation code.

        A caller-supplied code is ignored. On a code collision a new code is
        drawn, up to UNIQUE_CODE_MAX_ATTEMPTS times.

        Raises:
            ValidationError: If the competition is invalid
            ConflictError: If no free code was found
        """
        data = dict(data or {})
        for attempt in range(1, UNIQUE_CODE_MAX_ATTEMPTS + 1):
            data["uniqueCode"] = generate_unique_code()
            try:
                return await super().create(data, session=session)
            except ConflictError:
                logger.warning(
                    f"Invitation code collision (attempt {attempt}/{UNIQUE_CODE_MAX_ATTEMPTS})"
                )
        raise ConflictError("Impossible de générer un code d'invitation unique")

    async def update_by_id(self, id: Any, data: Document, session=None) -> Optional[Document]:
        patch = {
            key: value
            for key, value in dict(data or {}).items()
            if key not in self.immutable_fields
        }
        checked = validation.validate(CompetitionSchema, patch, partial=True)
        if _RULE_FIELDS & set(checked):
            current = await self.find_by_id(id, session=session)
            if current is None:
                return None
            validation.check_cross_field_rules(CompetitionSchema, {**current, **checked})
        return await super().update_by_id(id, data, session=session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_unique_code(self, code: str) -> Optional[Document]:
        code = normalize_code(code)
        if not code:
            return None
        return await self.find_one({"uniqueCode": code})

    async def find_by_organizer(self, organizer_id: str) -> List[Document]:
        if to_object_id(organizer_id) is None:
            return []
        return await self.find_many(
            {"organizerId": organizer_id}, sort=[("createdAt", DESCENDING)]
        )

    async def update_status(self, competition_id: str, status: str) -> Optional[Document]:
        return await self.update_by_id(competition_id, {"status": status})

    async def find_public_competitions(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Paginated listing of public competitions.

        Args:
            filters: Optional country, category, status, search (substring of
                name or description), page (1-based) and limit

        Returns:
            Dict with competitions, total, page, limit and totalPages
        """
        filters = filters or {}
        page = max(int(filters.get("page") or 1), 1)
        limit = max(int(filters.get("limit") or DEFAULT_PAGE_SIZE), 1)

        query: Dict[str, Any] = {"isPublic": True}
        for field in ("country", "category", "status"):
            if filters.get(field):
                query[field] = filters[field]
        search = (filters.get("search") or "").strip()
        if search:
            pattern = _search_pattern(search)
            query["$or"] = [{"name": pattern}, {"description": pattern}]

        competitions, total = await asyncio.gather(
            self.find_many(
                query,
                sort=[("startDate", ASCENDING), ("createdAt", DESCENDING)],
                skip=(page - 1) * limit,
                limit=limit,
            ),
            self.count(query),
        )
        return {
            "competitions": competitions,
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit) if total else 0,
        }

    async def search_competitions(self, query: str, limit: int = GLOBAL_SEARCH_LIMIT) -> List[Document]:
        """Public competitions whose name, description or city contains ``query``."""
        pattern = _search_pattern(query)
        return await self.find_many(
            {
                "isPublic": True,
                "$or": [{"name": pattern}, {"description": pattern}, {"city": pattern}],
            },
            sort=[("startDate", ASCENDING)],
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Aggregated views
    # ------------------------------------------------------------------

    async def get_competition_with_details(self, competition_id: str) -> Optional[Document]:
        """
        Competition joined with its organizer, participations and teams.

        Adds participationCount, approvedParticipationCount and teamCount.

        Returns:
            The detailed competition, or None if not found
        """
        object_id = to_object_id(competition_id)
        if object_id is None:
            return None
        pipeline = [
            {"$match": {"_id": object_id}},
            {"$lookup": {
                "from": Collections.USER,
                "localField": "organizerId",
                "foreignField": "_id",
                "as": "organizer",
            }},
            {"$lookup": {
                "from": Collections.PARTICIPATION,
                "localField": "_id",
                "foreignField": "competitionId",
                "as": "participations",
            }},
            {"$lookup": {
                "from": Collections.TEAM,
                "localField": "_id",
                "foreignField": "competitionId",
                "as": "teams",
            }},
        ]
        results = await self.aggregate(pipeline)
        if not results:
            return None

        competition = results[0]
        organizers = competition.get("organizer") or []
        organizer = organizers[0] if organizers else None
        if organizer is not None:
            organizer.pop("password", None)
        competition["organizer"] = organizer

        participations = competition.get("participations") or []
        teams = competition.get("teams") or []
        competition["participationCount"] = len(participations)
        competition["approvedParticipationCount"] = sum(
            1 for p in participations if p.get("status") in APPROVED_PARTICIPATION_STATUSES
        )
        competition["teamCount"] = len(teams)
        return competition

    async def get_stats_by_organizer(self, organizer_id: str) -> Dict[str, Any]:
        """
        Per-organizer totals.

        Returns:
            Dict with total, byStatus, byCategory and totalParticipants
            (approved participations across the organizer's competitions);
            zeroed on error
        """
        empty = {"total": 0, "byStatus": {}, "byCategory": {}, "totalParticipants": 0}
        organizer = to_object_id(organizer_id)
        if organizer is None:
            return empty
        try:
            cursor = self.collection.find({"organizerId": organizer}, {"status": 1, "category": 1})
            competitions = await cursor.to_list(length=None)
            by_status: Dict[str, int] = {}
            by_category: Dict[str, int] = {}
            for competition in competitions:
                status = competition.get("status")
                category = competition.get("category")
                if status:
                    by_status[status] = by_status.get(status, 0) + 1
                if category:
                    by_category[category] = by_category.get(category, 0) + 1

            total_participants = 0
            if competitions:
                total_participants = await self.db[Collections.PARTICIPATION].count_documents({
                    "competitionId": {"$in": [c["_id"] for c in competitions]},
                    "status": {"$in": list(APPROVED_PARTICIPATION_STATUSES)},
                })
        except Exception as e:
            logger.error(f"Error computing stats for organizer {organizer_id}: {e}", exc_info=True)
            return empty
        return {
            "total": len(competitions),
            "byStatus": by_status,
            "byCategory": by_category,
            "totalParticipants": total_participants,
        }

    async def count_active(self) -> int:
        return await self.count({"status": {"$in": list(ACTIVE_COMPETITION_STATUSES)}})
