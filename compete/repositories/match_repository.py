"""
Match repository: fixtures, live scores, team records and standings.

Status flow:
    SCHEDULED -> LIVE (start_match) -> COMPLETED (update_score)
    SCHEDULED | LIVE -> CANCELLED (cancel_match)
    SCHEDULED -> POSTPONED (postpone_match), POSTPONED -> LIVE
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from compete.database import validation
from compete.database.errors import ValidationError
from compete.database.models import Collections, MatchStatus
from compete.models.schemas import MatchSchema
from compete.repositories.base import BaseRepository, Document, to_object_id
from compete.utils.constants import (
    POINTS_FOR_DRAW,
    POINTS_FOR_LOSS,
    POINTS_FOR_WIN,
    ROUND_ROBIN_SPACING_DAYS,
)
from compete.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

ENTITY = "match"


def empty_record(team_id: str) -> Dict[str, Any]:
    return {
        "teamId": team_id,
        "played": 0,
        "won": 0,
        "drawn": 0,
        "lost": 0,
        "goalsFor": 0,
        "goalsAgainst": 0,
        "goalDifference": 0,
        "points": 0,
    }


def apply_result(record: Dict[str, Any], scored: int, conceded: int) -> None:
    """Add one completed match to a team record (3/1/0 scoring)."""
    record["played"] += 1
    record["goalsFor"] += scored
    record["goalsAgainst"] += conceded
    if scored > conceded:
        record["won"] += 1
        record["points"] += POINTS_FOR_WIN
    elif scored == conceded:
        record["drawn"] += 1
        record["points"] += POINTS_FOR_DRAW
    else:
        record["lost"] += 1
        record["points"] += POINTS_FOR_LOSS
    record["goalDifference"] = record["goalsFor"] - record["goalsAgainst"]


def _involving(team_id: ObjectId) -> Dict[str, Any]:
    return {"$or": [{"homeTeamId": team_id}, {"awayTeamId": team_id}]}


class MatchRepository(BaseRepository):
    collection_name = Collections.MATCH
    schema = MatchSchema
    object_id_fields = ("competitionId", "homeTeamId", "awayTeamId", "groupId")

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            ([("competitionId", ASCENDING), ("scheduledDate", ASCENDING)], {}),
            ("homeTeamId", {}),
            ("awayTeamId", {}),
            ("groupId", {}),
            ([("status", ASCENDING), ("scheduledDate", ASCENDING)], {}),
        ])

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_competition(self, competition_id: str, status: Optional[str] = None) -> List[Document]:
        if to_object_id(competition_id) is None:
            return []
        filter: Dict[str, Any] = {"competitionId": competition_id}
        if status:
            filter["status"] = status
        return await self.find_many(filter, sort=[("scheduledDate", ASCENDING)])

    async def find_by_team(self, team_id: str, status: Optional[str] = None) -> List[Document]:
        object_id = to_object_id(team_id)
        if object_id is None:
            return []
        filter = _involving(object_id)
        if status:
            filter["status"] = status
        return await self.find_many(filter, sort=[("scheduledDate", ASCENDING)])

    async def find_by_group(self, group_id: str) -> List[Document]:
        if to_object_id(group_id) is None:
            return []
        return await self.find_many({"groupId": group_id}, sort=[("scheduledDate", ASCENDING)])

    async def count_upcoming(self) -> int:
        return await self.count({
            "status": MatchStatus.SCHEDULED.value,
            "scheduledDate": {"$gt": utcnow()},
        })

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_match(self, match_id: str) -> Optional[Document]:
        """SCHEDULED/POSTPONED -> LIVE, stamping startTime."""
        return await self._transition(
            match_id,
            ENTITY,
            [MatchStatus.SCHEDULED.value, MatchStatus.POSTPONED.value],
            MatchStatus.LIVE.value,
            {"startTime": utcnow()},
        )

    async def update_score(self, match_id: str, home_score: Any, away_score: Any) -> Optional[Document]:
        """
        Record the final score: LIVE -> COMPLETED, stamping endTime.

        A COMPLETED match may have its score corrected.

        Raises:
            ValidationError: If either score is missing or negative
            InvalidTransitionError: If the match is not LIVE or COMPLETED
        """
        missing = [
            name
            for name, value in (("homeScore", home_score), ("awayScore", away_score))
            if value is None
        ]
        if missing:
            raise ValidationError(
                f"Les deux scores sont requis: {', '.join(missing)} manquant(s)",
                missing_fields=missing,
            )
        scores = validation.validate(
            MatchSchema, {"homeScore": home_score, "awayScore": away_score}, partial=True
        )
        return await self._transition(
            match_id,
            ENTITY,
            [MatchStatus.LIVE.value, MatchStatus.COMPLETED.value],
            MatchStatus.COMPLETED.value,
            {**scores, "endTime": utcnow()},
        )

    async def cancel_match(self, match_id: str, reason: Optional[str] = None) -> Optional[Document]:
        """SCHEDULED/LIVE -> CANCELLED; the optional reason goes to notes."""
        fields = {"notes": reason.strip()} if reason and reason.strip() else {}
        return await self._transition(
            match_id,
            ENTITY,
            [MatchStatus.SCHEDULED.value, MatchStatus.LIVE.value],
            MatchStatus.CANCELLED.value,
            fields,
        )

    async def postpone_match(
        self, match_id: str, new_date: Any, reason: Optional[str] = None
    ) -> Optional[Document]:
        """
        SCHEDULED -> POSTPONED with a new scheduled date.

        Raises:
            ValidationError: If the new date is missing or not a date
            InvalidTransitionError: If the match is not SCHEDULED
        """
        if new_date is None:
            raise ValidationError(
                "Une nouvelle date est requise pour reporter un match",
                missing_fields=["scheduledDate"],
            )
        fields = validation.validate(MatchSchema, {"scheduledDate": new_date}, partial=True)
        if reason and reason.strip():
            fields["notes"] = reason.strip()
        return await self._transition(
            match_id,
            ENTITY,
            [MatchStatus.SCHEDULED.value],
            MatchStatus.POSTPONED.value,
            fields,
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def generate_round_robin_matches(
        self,
        competition_id: str,
        team_ids: List[str],
        start_date: Optional[datetime] = None,
        group_id: Optional[str] = None,
    ) -> List[Document]:
        """
        Create a home-and-away round robin between ``team_ids``.

        Every pair plays twice (round 1 at the first team's home, round 2
        reversed). Fixture n is scheduled n weeks after ``start_date``
        (default: now); venue and referee availability are not considered.

        Returns:
            The created matches; empty for an invalid competition id or fewer
            than two distinct teams
        """
        teams = list(dict.fromkeys(t for t in team_ids if to_object_id(t) is not None))
        if to_object_id(competition_id) is None or len(teams) < 2:
            return []

        start = start_date or utcnow()
        created: List[Document] = []
        match_number = 0
        for i, home in enumerate(teams):
            for away in teams[i + 1:]:
                for round_number, (home_id, away_id) in ((1, (home, away)), (2, (away, home))):
                    match_number += 1
                    match = await self.create({
                        "competitionId": competition_id,
                        "homeTeamId": home_id,
                        "awayTeamId": away_id,
                        "groupId": group_id,
                        "round": round_number,
                        "matchNumber": match_number,
                        "scheduledDate": start + timedelta(days=ROUND_ROBIN_SPACING_DAYS * match_number),
                        "status": MatchStatus.SCHEDULED.value,
                    })
                    if match is not None:
                        created.append(match)
        logger.info(
            f"Generated {len(created)} round-robin matches for competition {competition_id}"
        )
        return created

    # ------------------------------------------------------------------
    # Records and standings
    # ------------------------------------------------------------------

    async def _completed_matches(self, filter: Dict[str, Any]) -> List[Document]:
        return await self.find_many({
            **filter,
            "status": MatchStatus.COMPLETED.value,
            "homeScore": {"$ne": None},
            "awayScore": {"$ne": None},
        })

    async def get_team_record(self, team_id: str, competition_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Played/won/drawn/lost, goals and points over COMPLETED matches.

        Args:
            team_id: Team to summarize
            competition_id: Restrict to one competition

        Returns:
            Team record (all zeros when the team has no completed match)
        """
        record = empty_record(team_id)
        object_id = to_object_id(team_id)
        if object_id is None:
            return record
        filter = _involving(object_id)
        if competition_id is not None:
            filter["competitionId"] = competition_id
        for match in await self._completed_matches(filter):
            if match["homeTeamId"] == str(object_id):
                apply_result(record, match["homeScore"], match["awayScore"])
            else:
                apply_result(record, match["awayScore"], match["homeScore"])
        return record

    async def get_standings(self, competition_id: str, group_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        League table of a competition (or of one group).

        Teams are ranked by points, goal difference, goals scored, then name.

        Returns:
            One record per active team with its teamName and 1-based position
        """
        if to_object_id(competition_id) is None:
            return []
        team_filter: Dict[str, Any] = {"competitionId": to_object_id(competition_id), "isActive": True}
        match_filter: Dict[str, Any] = {"competitionId": competition_id}
        if group_id is not None:
            team_filter["groupId"] = to_object_id(group_id)
            match_filter["groupId"] = group_id

        try:
            cursor = self.db[Collections.TEAM].find(team_filter, {"name": 1})
            teams = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error(f"Error loading teams for standings of {competition_id}: {e}", exc_info=True)
            return []
        records: Dict[str, Dict[str, Any]] = {}
        for team in teams:
            record = empty_record(str(team["_id"]))
            record["teamName"] = team.get("name", "")
            records[record["teamId"]] = record

        for match in await self._completed_matches(match_filter):
            home = records.get(match["homeTeamId"])
            away = records.get(match["awayTeamId"])
            if home is not None:
                apply_result(home, match["homeScore"], match["awayScore"])
            if away is not None:
                apply_result(away, match["awayScore"], match["homeScore"])

        standings = sorted(
            records.values(),
            key=lambda r: (-r["points"], -r["goalDifference"], -r["goalsFor"], r["teamName"].lower()),
        )
        for position, record in enumerate(standings, start=1):
            record["position"] = position
        return standings

    # ------------------------------------------------------------------
    # Joined views
    # ------------------------------------------------------------------

    def _team_lookups(self) -> List[Document]:
        return [
            {"$lookup": {
                "from": Collections.TEAM,
                "localField": "homeTeamId",
                "foreignField": "_id",
                "as": "homeTeam",
            }},
            {"$lookup": {
                "from": Collections.TEAM,
                "localField": "awayTeamId",
                "foreignField": "_id",
                "as": "awayTeam",
            }},
        ]

    @staticmethod
    def _flatten(rows: Iterable[Document], *fields: str) -> List[Document]:
        rows = list(rows)
        for row in rows:
            for field in fields:
                row[field] = (row.get(field) or [None])[0]
        return rows

    async def get_matches_with_teams(self, competition_id: str, status: Optional[str] = None) -> List[Document]:
        """Matches of a competition with homeTeam and awayTeam embedded, soonest first."""
        object_id = to_object_id(competition_id)
        if object_id is None:
            return []
        match: Dict[str, Any] = {"competitionId": object_id}
        if status:
            match["status"] = status
        rows = await self.aggregate([
            {"$match": match},
            *self._team_lookups(),
            {"$sort": {"scheduledDate": 1}},
        ])
        return self._flatten(rows, "homeTeam", "awayTeam")

    async def get_upcoming_matches(
        self,
        team_id: Optional[str] = None,
        limit: int = 10,
        competition_id: Optional[str] = None,
    ) -> List[Document]:
        """
        SCHEDULED matches in the future, soonest first, with both teams and
        the competition embedded.

        Args:
            team_id: Only matches involving this team
            limit: Maximum number of matches
            competition_id: Only matches of this competition
        """
        match: Dict[str, Any] = {
            "status": MatchStatus.SCHEDULED.value,
            "scheduledDate": {"$gt": utcnow()},
        }
        if team_id is not None:
            object_id = to_object_id(team_id)
            if object_id is None:
                return []
            match.update(_involving(object_id))
        if competition_id is not None:
            object_id = to_object_id(competition_id)
            if object_id is None:
                return []
            match["competitionId"] = object_id

        rows = await self.aggregate([
            {"$match": match},
            {"$sort": {"scheduledDate": 1}},
            {"$limit": limit},
            *self._team_lookups(),
            {"$lookup": {
                "from": Collections.COMPETITION,
                "localField": "competitionId",
                "foreignField": "_id",
                "as": "competition",
            }},
        ])
        return self._flatten(rows, "homeTeam", "awayTeam", "competition")
