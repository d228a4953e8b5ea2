"""
Participation repository: applications to competitions and their review.

Status flow: PENDING -> APPROVED | REJECTED | WITHDRAWN. ACCEPTED is an
older spelling of APPROVED and is treated the same way.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure

from compete.database.errors import ConflictError, ValidationError
from compete.database.models import (
    APPROVED_PARTICIPATION_STATUSES,
    Collections,
    ParticipationStatus,
)
from compete.models.schemas import ParticipationSchema
from compete.repositories.base import BaseRepository, Document, to_object_id
from compete.utils.constants import RECENT_APPLICATIONS_DAYS
from compete.utils.datetime_utils import days_ago, utcnow

logger = logging.getLogger(__name__)

ALREADY_PARTICIPATING_MESSAGE = "Cet utilisateur participe déjà à cette compétition"

ENTITY = "participation"

# Server error code for a write conflict inside a transaction
WRITE_CONFLICT_CODE = 112


class ParticipationRepository(BaseRepository):
    collection_name = Collections.PARTICIPATION
    schema = ParticipationSchema
    object_id_fields = ("competitionId", "participantId")
    conflict_message = ALREADY_PARTICIPATING_MESSAGE

    async def create_indexes(self) -> None:
        await self._ensure_indexes([
            (
                [("competitionId", ASCENDING), ("participantId", ASCENDING)],
                {"unique": True},
            ),
            ("participantId", {}),
            ("status", {}),
            ([("applicationDate", DESCENDING)], {}),
        ])

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_competition(
        self, competition_id: str, status: Optional[str] = None
    ) -> List[Document]:
        if to_object_id(competition_id) is None:
            return []
        filter: Dict[str, Any] = {"competitionId": competition_id}
        if status:
            filter["status"] = status
        return await self.find_many(filter, sort=[("applicationDate", DESCENDING)])

    async def find_by_participant(self, participant_id: str) -> List[Document]:
        if to_object_id(participant_id) is None:
            return []
        return await self.find_many(
            {"participantId": participant_id}, sort=[("applicationDate", DESCENDING)]
        )

    async def find_existing(
        self, competition_id: str, participant_id: str, session=None
    ) -> Optional[Document]:
        if to_object_id(competition_id) is None or to_object_id(participant_id) is None:
            return None
        return await self.find_one(
            {"competitionId": competition_id, "participantId": participant_id},
            session=session,
        )

    async def count_approved(self, competition_id: str) -> int:
        if to_object_id(competition_id) is None:
            return 0
        return await self.count({
            "competitionId": competition_id,
            "status": {"$in": list(APPROVED_PARTICIPATION_STATUSES)},
        })

    # ------------------------------------------------------------------
    # Writes and transitions
    # ------------------------------------------------------------------

    async def create_participation(self, data: Document) -> Optional[Document]:
        """
        Register a participant in a competition.

        Raises:
            ConflictError: If this participant already has a participation for
                the competition (pre-check, or the unique index or a
                transaction write conflict under a race)
            ValidationError: If competitionId or participantId is missing
        """
        try:
            async with self._transaction() as session:
                existing = await self.find_existing(
                    data.get("competitionId"), data.get("participantId"), session=session
                )
                if existing is not None:
                    raise ConflictError(ALREADY_PARTICIPATING_MESSAGE)
                return await self.create(data, session=session)
        except OperationFailure as e:
            # A concurrent application for the same pair aborted our transaction
            if e.code == WRITE_CONFLICT_CODE or e.has_error_label("TransientTransactionError"):
                logger.warning(f"Participation insert lost a write conflict: {e}")
                raise ConflictError(ALREADY_PARTICIPATING_MESSAGE) from e
            raise

    async def approve_participation(self, participation_id: str) -> Optional[Document]:
        """
        PENDING -> APPROVED, stamping approvalDate.

        Returns:
            Updated participation, or None if it does not exist

        Raises:
            InvalidTransitionError: If the participation is not PENDING
        """
        return await self._transition(
            participation_id,
            ENTITY,
            [ParticipationStatus.PENDING.value],
            ParticipationStatus.APPROVED.value,
            {"approvalDate": utcnow()},
        )

    async def reject_participation(self, participation_id: str, reason: str) -> Optional[Document]:
        """
        PENDING/APPROVED -> REJECTED with a mandatory reason.

        Raises:
            ValidationError: If the reason is blank
            InvalidTransitionError: If the participation is withdrawn or already rejected
        """
        if not reason or not reason.strip():
            raise ValidationError(
                "Une raison de refus est requise",
                missing_fields=["rejectionReason"],
            )
        return await self._transition(
            participation_id,
            ENTITY,
            [ParticipationStatus.PENDING.value, *APPROVED_PARTICIPATION_STATUSES],
            ParticipationStatus.REJECTED.value,
            {"rejectionReason": reason.strip(), "approvalDate": utcnow()},
        )

    async def withdraw_participation(self, participation_id: str) -> Optional[Document]:
        """Any non-terminal status -> WITHDRAWN."""
        return await self._transition(
            participation_id,
            ENTITY,
            [ParticipationStatus.PENDING.value, *APPROVED_PARTICIPATION_STATUSES],
            ParticipationStatus.WITHDRAWN.value,
        )

    # ------------------------------------------------------------------
    # Aggregated views
    # ------------------------------------------------------------------

    async def get_participations_with_details(
        self,
        competition_id: Optional[str] = None,
        participant_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Document]:
        """Participations joined with their participant and competition, newest first."""
        match: Dict[str, Any] = {}
        if competition_id is not None:
            match["competitionId"] = to_object_id(competition_id)
        if participant_id is not None:
            match["participantId"] = to_object_id(participant_id)
        if status:
            match["status"] = status
        if any(value is None for value in match.values()):
            return []

        rows = await self.aggregate([
            {"$match": match},
            {"$lookup": {
                "from": Collections.USER,
                "localField": "participantId",
                "foreignField": "_id",
                "as": "participant",
            }},
            {"$lookup": {
                "from": Collections.COMPETITION,
                "localField": "competitionId",
                "foreignField": "_id",
                "as": "competition",
            }},
            {"$sort": {"applicationDate": -1}},
        ])
        for row in rows:
            participant = (row.get("participant") or [None])[0]
            if participant is not None:
                participant.pop("password", None)
            row["participant"] = participant
            row["competition"] = (row.get("competition") or [None])[0]
        return rows

    async def get_participation_stats(self, competition_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Application totals.

        Returns:
            Dict with total, byStatus and recentApplications (last 7 days);
            zeroed on error
        """
        base: Dict[str, Any] = {}
        if competition_id is not None:
            object_id = to_object_id(competition_id)
            if object_id is None:
                return {"total": 0, "byStatus": {}, "recentApplications": 0}
            base["competitionId"] = object_id
        try:
            cursor = self.collection.aggregate([
                {"$match": base},
                {"$group": {"_id": "$status", "count": {"$sum": 1}}},
            ])
            rows, recent = await asyncio.gather(
                cursor.to_list(length=None),
                self.collection.count_documents({
                    **base,
                    "applicationDate": {"$gte": days_ago(RECENT_APPLICATIONS_DAYS)},
                }),
            )
        except Exception as e:
            logger.error(f"Error computing participation stats: {e}", exc_info=True)
            return {"total": 0, "byStatus": {}, "recentApplications": 0}
        by_status = {row["_id"]: row["count"] for row in rows if row["_id"] is not None}
        return {
            "total": sum(by_status.values()),
            "byStatus": by_status,
            "recentApplications": recent,
        }
