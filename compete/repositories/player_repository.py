"""
Player repository: rosters, jersey numbers and captaincy.

Jersey numbers are unique among a team's active players (partial unique
index). A team has at most one captain; `set_captain` is the only way to
change captaincy.
"""

import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING

from compete.database.errors import ConflictError
from compete.database.models import Collections
from compete.models.schemas import PlayerSchema
from compete.repositories.base import BaseRepository, Document, to_object_id
from compete.utils.constants import MAX_JERSEY_NUMBER, MIN_JERSEY_NUMBER
from compete.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

ROSTER_FULL_MESSAGE = (
    f"Tous les numéros de {MIN_JERSEY_NUMBER} à {MAX_JERSEY_NUMBER} sont déjà utilisés"
)


def jersey_taken_message(number: Any) -> str:
    return f"Le numéro {number} est déjà utilisé"


class PlayerRepository(BaseRepository):
    collection_name = Collections.PLAYER
    schema = PlayerSchema
    object_id_fields = ("teamId",)
    conflict_message = "Ce numéro de maillot est déjà utilisé dans cette équipe"

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            (
                [("teamId", ASCENDING), ("jerseyNumber", ASCENDING)],
                {"unique": True, "partialFilterExpression": {"isActive": True}},
            ),
            ([("teamId", ASCENDING), ("isCaptain", ASCENDING)], {}),
            ("position", {}),
        ])

    # ------------------------------------------------------------------
    # Jersey numbers
    # ------------------------------------------------------------------

    async def _used_numbers(self, team_id: str, exclude_player_id: Optional[str] = None) -> set:
        filter: Dict[str, Any] = {"teamId": team_id, "isActive": True}
        excluded = to_object_id(exclude_player_id)
        if excluded is not None:
            filter["_id"] = {"$ne": excluded}
        players = await self.find_many(filter)
        return {p.get("jerseyNumber") for p in players}

    async def check_jersey_number_exists(
        self, team_id: str, jersey_number: int, exclude_player_id: Optional[str] = None
    ) -> bool:
        """Whether an active player of the team already wears ``jersey_number``."""
        if to_object_id(team_id) is None:
            return False
        return jersey_number in await self._used_numbers(team_id, exclude_player_id)

    async def get_next_jersey_number(self, team_id: str) -> int:
        """
        Lowest free jersey number on the team.

        Raises:
            ConflictError: If every number from 1 to 99 is taken
        """
        used = await self._used_numbers(team_id)
        for number in range(MIN_JERSEY_NUMBER, MAX_JERSEY_NUMBER + 1):
            if number not in used:
                return number
        raise ConflictError(ROSTER_FULL_MESSAGE)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_player(self, data: Document) -> Optional[Document]:
        """
        Add a player to a team.

        Without a jersey number, the lowest free one is assigned. New players
        are never captains; use `set_captain` afterwards.

        Raises:
            ConflictError: If the jersey number is taken on the team
            ValidationError: If the player is invalid
        """
        data = dict(data)
        data["isCaptain"] = False
        team_id = data.get("teamId")
        if data.get("jerseyNumber") is None and to_object_id(team_id) is not None:
            data["jerseyNumber"] = await self.get_next_jersey_number(team_id)

        number = data.get("jerseyNumber")
        if await self.check_jersey_number_exists(team_id, number):
            raise ConflictError(jersey_taken_message(number))
        try:
            return await self.create(data)
        except ConflictError as e:
            raise ConflictError(jersey_taken_message(number)) from e

    async def update_by_id(self, id: Any, data: Document, session=None) -> Optional[Document]:
        data = dict(data or {})
        # Captaincy only changes through set_captain/remove_captain
        data.pop("isCaptain", None)
        number = data.get("jerseyNumber")
        if number is not None:
            current = await self.find_by_id(id, session=session)
            if current is None:
                return None
            if await self.check_jersey_number_exists(current["teamId"], number, current["id"]):
                raise ConflictError(jersey_taken_message(number))
        return await super().update_by_id(id, data, session=session)

    async def set_captain(self, player_id: str) -> Optional[Document]:
        """
        Make ``player_id`` the captain of its team.

        Every other captain of the team is cleared first, then the player is
        flagged; both writes share a transaction when the deployment supports
        one.

        Returns:
            The new captain, or None if the player does not exist

        Raises:
            PyMongoError: If clearing the previous captains fails; the player
                is then left unchanged
        """
        player = await self.find_by_id(player_id)
        if player is None:
            return None
        object_id = to_object_id(player_id)
        async with self._transaction() as session:
            cleared = await self._update_many(
                {"teamId": player["teamId"], "isCaptain": True, "_id": {"$ne": object_id}},
                {"isCaptain": False},
                session=session,
            )
            captain = await self._update_where(
                {"_id": object_id},
                {"$set": {"isCaptain": True}},
                session=session,
            )
        logger.info(
            f"Player {player_id} is now captain of team {player['teamId']} "
            f"({cleared} previous captain(s) cleared)"
        )
        return captain

    async def remove_captain(self, player_id: str) -> Optional[Document]:
        object_id = to_object_id(player_id)
        if object_id is None:
            return None
        return await self._update_where({"_id": object_id}, {"$set": {"isCaptain": False}})

    async def activate_player(self, player_id: str) -> Optional[Document]:
        return await self.update_by_id(player_id, {"isActive": True})

    async def deactivate_player(self, player_id: str) -> Optional[Document]:
        object_id = to_object_id(player_id)
        if object_id is None:
            return None
        # An inactive player cannot stay captain
        return await self._update_where(
            {"_id": object_id}, {"$set": {"isActive": False, "isCaptain": False}}
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_team(self, team_id: str, active_only: bool = False) -> List[Document]:
        if to_object_id(team_id) is None:
            return []
        filter: Dict[str, Any] = {"teamId": team_id}
        if active_only:
            filter["isActive"] = True
        return await self.find_many(filter, sort=[("jerseyNumber", ASCENDING)])

    async def find_captain(self, team_id: str) -> Optional[Document]:
        if to_object_id(team_id) is None:
            return None
        return await self.find_one({"teamId": team_id, "isCaptain": True})

    async def get_players_by_position(self, team_id: str) -> Dict[str, List[Document]]:
        """Active players of the team grouped by position (OTHER when unset)."""
        grouped: Dict[str, List[Document]] = {}
        for player in await self.find_by_team(team_id, active_only=True):
            grouped.setdefault(player.get("position") or "OTHER", []).append(player)
        return grouped

    async def get_team_statistics(self, team_id: str) -> Dict[str, Any]:
        """
        Roster summary for one team.

        Returns:
            Dict with totalPlayers, activePlayers, byPosition, captainId and
            averageAge (None when no birth dates are known)
        """
        players = await self.find_by_team(team_id)
        active = [p for p in players if p.get("isActive", True)]
        by_position: Dict[str, int] = {}
        for player in active:
            position = player.get("position") or "OTHER"
            by_position[position] = by_position.get(position, 0) + 1

        today = utcnow()
        ages = [
            (today - p["dateOfBirth"]).days / 365.25
            for p in active
            if p.get("dateOfBirth") is not None
        ]
        captain = next((p for p in active if p.get("isCaptain")), None)
        return {
            "totalPlayers": len(players),
            "activePlayers": len(active),
            "byPosition": by_position,
            "captainId": captain["id"] if captain else None,
            "averageAge": round(sum(ages) / len(ages), 1) if ages else None,
        }
