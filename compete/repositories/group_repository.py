"""
Group repository. Group names are unique per competition regardless of case.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ASCENDING

from compete.database.errors import ConflictError
from compete.database.models import Collections
from compete.models.schemas import GroupSchema
from compete.repositories.base import BaseRepository, Document, to_object_id
from compete.repositories.team_repository import name_key

logger = logging.getLogger(__name__)

GROUP_NAME_TAKEN_MESSAGE = "Un groupe avec ce nom existe déjà dans cette compétition"


class GroupRepository(BaseRepository):
    collection_name = Collections.GROUP
    schema = GroupSchema
    object_id_fields = ("competitionId",)
    conflict_message = GROUP_NAME_TAKEN_MESSAGE

    def _prepare_document(self, doc: Document) -> Document:
        if isinstance(doc.get("name"), str):
            doc["name"] = doc["name"].strip()
            doc["nameKey"] = name_key(doc["name"])
        return doc

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            ([("competitionId", ASCENDING), ("nameKey", ASCENDING)], {"unique": True}),
        ])

    async def check_name_exists(
        self, name: str, competition_id: str, exclude_group_id: Optional[str] = None
    ) -> bool:
        if not name or to_object_id(competition_id) is None:
            return False
        filter: Dict[str, Any] = {"competitionId": competition_id, "nameKey": name_key(name)}
        excluded = to_object_id(exclude_group_id)
        if excluded is not None:
            filter["_id"] = {"$ne": excluded}
        return await self.count(filter) > 0

    async def create_group(self, data: Document) -> Optional[Document]:
        """
        Raises:
            ConflictError: If the competition already has a group with this name
        """
        name = data.get("name")
        if isinstance(name, str) and await self.check_name_exists(name, data.get("competitionId")):
            raise ConflictError(GROUP_NAME_TAKEN_MESSAGE)
        return await self.create(data)

    async def update_by_id(self, id: Any, data: Document, session=None) -> Optional[Document]:
        name = (data or {}).get("name")
        if isinstance(name, str) and name.strip():
            current = await self.find_by_id(id, session=session)
            if current is None:
                return None
            if await self.check_name_exists(name, current["competitionId"], current["id"]):
                raise ConflictError(GROUP_NAME_TAKEN_MESSAGE)
        return await super().update_by_id(id, data, session=session)

    async def create_groups_for_competition(self, competition_id: str, names: Iterable[str]) -> List[Document]:
        """
        Create the named groups that do not exist yet in the competition.

        Names already present (in any casing, or repeated in ``names``) are
        skipped without error.

        Returns:
            The groups actually created
        """
        if to_object_id(competition_id) is None:
            return []
        existing = {g.get("nameKey") for g in await self.find_by_competition(competition_id)}
        created: List[Document] = []
        for name in names:
            if not isinstance(name, str) or not name.strip():
                continue
            key = name_key(name)
            if key in existing:
                continue
            existing.add(key)
            try:
                group = await self.create({"name": name, "competitionId": competition_id})
            except ConflictError:
                # Created concurrently by another caller
                continue
            if group is not None:
                created.append(group)
        logger.info(f"Created {len(created)} group(s) for competition {competition_id}")
        return created

    async def find_by_competition(self, competition_id: str) -> List[Document]:
        if to_object_id(competition_id) is None:
            return []
        return await self.find_many({"competitionId": competition_id}, sort=[("name", ASCENDING)])

    def _teams_lookup(self) -> Document:
        return {"$lookup": {
            "from": Collections.TEAM,
            "localField": "_id",
            "foreignField": "groupId",
            "as": "teams",
        }}

    @staticmethod
    def _with_team_count(group: Document) -> Document:
        teams = sorted(group.get("teams") or [], key=lambda t: t.get("name", "").lower())
        group["teams"] = teams
        group["teamCount"] = len(teams)
        return group

    async def get_group_with_teams(self, group_id: str) -> Optional[Document]:
        """Group with its teams (by name) and teamCount, or None."""
        object_id = to_object_id(group_id)
        if object_id is None:
            return None
        rows = await self.aggregate([{"$match": {"_id": object_id}}, self._teams_lookup()])
        if not rows:
            return None
        return self._with_team_count(rows[0])

    async def get_competition_groups(self, competition_id: str) -> List[Document]:
        """All groups of a competition with their teams, ordered by name."""
        object_id = to_object_id(competition_id)
        if object_id is None:
            return []
        rows = await self.aggregate([
            {"$match": {"competitionId": object_id}},
            self._teams_lookup(),
            {"$sort": {"name": 1}},
        ])
        return [self._with_team_count(row) for row in rows]
