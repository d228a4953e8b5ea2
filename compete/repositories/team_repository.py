"""
Team repository.

Team names are unique per competition regardless of case; the lowercase
``nameKey`` field carries that constraint in a unique compound index.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING

from compete.database.errors import ConflictError
from compete.database.models import Collections
from compete.models.schemas import TeamSchema
from compete.repositories.base import BaseRepository, Document, to_object_id
from compete.utils.constants import GLOBAL_SEARCH_LIMIT

logger = logging.getLogger(__name__)

TEAM_NAME_TAKEN_MESSAGE = "Une équipe avec ce nom existe déjà dans cette compétition"


def name_key(name: str) -> str:
    return name.strip().lower()


class TeamRepository(BaseRepository):
    collection_name = Collections.TEAM
    schema = TeamSchema
    object_id_fields = ("competitionId", "captainId", "groupId")
    conflict_message = TEAM_NAME_TAKEN_MESSAGE

    def _prepare_document(self, doc: Document) -> Document:
        if isinstance(doc.get("name"), str):
            doc["name"] = doc["name"].strip()
            doc["nameKey"] = name_key(doc["name"])
        return doc

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            ([("competitionId", ASCENDING), ("nameKey", ASCENDING)], {"unique": True}),
            ("captainId", {}),
            ("groupId", {}),
            ("isActive", {}),
        ])

    async def check_name_exists(
        self, name: str, competition_id: str, exclude_team_id: Optional[str] = None
    ) -> bool:
        """Whether ``name`` (any casing) is already used by a team of the competition."""
        if not name or to_object_id(competition_id) is None:
            return False
        filter: Dict[str, Any] = {"competitionId": competition_id, "nameKey": name_key(name)}
        excluded = to_object_id(exclude_team_id)
        if excluded is not None:
            filter["_id"] = {"$ne": excluded}
        return await self.count(filter) > 0

    async def create_team(self, data: Document) -> Optional[Document]:
        """
        Create a team after checking its name is free in the competition.

        Raises:
            ConflictError: If the name is taken in this competition
            ValidationError: If name, competitionId or captainId is missing
        """
        name = data.get("name")
        if isinstance(name, str) and await self.check_name_exists(name, data.get("competitionId")):
            raise ConflictError(TEAM_NAME_TAKEN_MESSAGE)
        return await self.create(data)

    async def update_by_id(self, id: Any, data: Document, session=None) -> Optional[Document]:
        name = (data or {}).get("name")
        if isinstance(name, str) and name.strip():
            current = await self.find_by_id(id, session=session)
            if current is None:
                return None
            competition_id = data.get("competitionId") or current.get("competitionId")
            if await self.check_name_exists(name, competition_id, exclude_team_id=current["id"]):
                raise ConflictError(TEAM_NAME_TAKEN_MESSAGE)
        return await super().update_by_id(id, data, session=session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_competition(self, competition_id: str, active_only: bool = False) -> List[Document]:
        if to_object_id(competition_id) is None:
            return []
        filter: Dict[str, Any] = {"competitionId": competition_id}
        if active_only:
            filter["isActive"] = True
        return await self.find_many(filter, sort=[("name", ASCENDING)])

    async def find_by_captain(self, captain_id: str) -> List[Document]:
        if to_object_id(captain_id) is None:
            return []
        return await self.find_many({"captainId": captain_id}, sort=[("name", ASCENDING)])

    async def find_by_group(self, group_id: str) -> List[Document]:
        if to_object_id(group_id) is None:
            return []
        return await self.find_many({"groupId": group_id}, sort=[("name", ASCENDING)])

    async def search_teams(self, query: str, limit: int = GLOBAL_SEARCH_LIMIT) -> List[Document]:
        """Active teams whose name contains ``query`` (case-insensitive)."""
        pattern = {"$regex": re.escape(query.strip()), "$options": "i"}
        return await self.find_many(
            {"isActive": True, "name": pattern}, sort=[("name", ASCENDING)], limit=limit
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def assign_to_group(self, team_id: str, group_id: str) -> Optional[Document]:
        return await self.update_by_id(team_id, {"groupId": group_id})

    async def remove_from_group(self, team_id: str) -> Optional[Document]:
        return await self.update_by_id(team_id, {"groupId": None})

    async def activate_team(self, team_id: str) -> Optional[Document]:
        return await self.update_by_id(team_id, {"isActive": True})

    async def deactivate_team(self, team_id: str) -> Optional[Document]:
        return await self.update_by_id(team_id, {"isActive": False})

    # ------------------------------------------------------------------
    # Aggregated views
    # ------------------------------------------------------------------

    async def get_team_with_players(self, team_id: str) -> Optional[Document]:
        """
        Team joined with its players (by jersey number), captain, competition and group.

        Returns:
            The team with players, playerCount, captain, competition and
            group, or None if not found
        """
        object_id = to_object_id(team_id)
        if object_id is None:
            return None
        rows = await self.aggregate([
            {"$match": {"_id": object_id}},
            {"$lookup": {
                "from": Collections.PLAYER,
                "localField": "_id",
                "foreignField": "teamId",
                "as": "players",
            }},
            {"$lookup": {
                "from": Collections.USER,
                "localField": "captainId",
                "foreignField": "_id",
                "as": "captain",
            }},
            {"$lookup": {
                "from": Collections.COMPETITION,
                "localField": "competitionId",
                "foreignField": "_id",
                "as": "competition",
            }},
            {"$lookup": {
                "from": Collections.GROUP,
                "localField": "groupId",
                "foreignField": "_id",
                "as": "group",
            }},
        ])
        if not rows:
            return None

        team = rows[0]
        players = sorted(team.get("players") or [], key=lambda p: p.get("jerseyNumber") or 0)
        team["players"] = players
        team["playerCount"] = len(players)
        captain = (team.get("captain") or [None])[0]
        if captain is not None:
            captain.pop("password", None)
        team["captain"] = captain
        team["competition"] = (team.get("competition") or [None])[0]
        team["group"] = (team.get("group") or [None])[0]
        return team

    async def get_team_stats(self, competition_id: Optional[str] = None) -> Dict[str, int]:
        """
        Team counters.

        Returns:
            Dict with total, active, inactive and withGroup; zeroed on error
        """
        base: Dict[str, Any] = {}
        if competition_id is not None:
            object_id = to_object_id(competition_id)
            if object_id is None:
                return {"total": 0, "active": 0, "inactive": 0, "withGroup": 0}
            base["competitionId"] = object_id
        try:
            total, active, with_group = await asyncio.gather(
                self.collection.count_documents(base),
                self.collection.count_documents({**base, "isActive": True}),
                self.collection.count_documents({**base, "groupId": {"$exists": True}}),
            )
        except Exception as e:
            logger.error(f"Error computing team stats: {e}", exc_info=True)
            return {"total": 0, "active": 0, "inactive": 0, "withGroup": 0}
        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "withGroup": with_group,
        }
