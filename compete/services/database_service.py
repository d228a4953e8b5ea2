"""
Database service: one entry point to every repository plus the
cross-entity operations (index setup, cleanup, health, dashboard counters,
global search, joining and reviewing participations).
"""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from compete.database.db import MongoConnection
from compete.database.errors import ConflictError, ValidationError
from compete.database.models import (
    ACTIVE_COMPETITION_STATUSES,
    Collections,
    CompetitionStatus,
    MatchStatus,
    NotificationCategory,
    NotificationType,
    ParticipationStatus,
    RelatedType,
)
from compete.repositories.auth_repositories import (
    AccountRepository,
    SessionRepository,
    VerificationTokenRepository,
)
from compete.repositories.base import BaseRepository, Document
from compete.repositories.competition_repository import CompetitionRepository
from compete.repositories.group_repository import GroupRepository
from compete.repositories.match_repository import MatchRepository
from compete.repositories.notification_repository import NotificationRepository
from compete.repositories.participation_repository import ParticipationRepository
from compete.repositories.player_repository import PlayerRepository
from compete.repositories.team_repository import TeamRepository
from compete.repositories.user_repository import UserRepository
from compete.utils.constants import NOTIFICATION_RETENTION_DAYS, RECENT_USERS_DAYS
from compete.utils.datetime_utils import days_ago, utcnow

logger = logging.getLogger(__name__)

COMPETITION_FULL_MESSAGE = "Cette compétition est complète"


def _empty_global_stats() -> Dict[str, Dict[str, int]]:
    return {
        "users": {"total": 0, "recent": 0},
        "competitions": {"total": 0, "active": 0},
        "teams": {"total": 0, "active": 0},
        "matches": {"total": 0, "upcoming": 0},
    }


class DatabaseService:
    """Facade over the entity repositories sharing one database handle."""

    def __init__(self, db, *, supports_transactions: bool = False):
        """
        Args:
            db: Database handle
            supports_transactions: Whether multi-document transactions are available
        """
        self.db = db
        options = {"supports_transactions": supports_transactions}
        self._users = UserRepository(db, **options)
        self._competitions = CompetitionRepository(db, **options)
        self._participations = ParticipationRepository(db, **options)
        self._teams = TeamRepository(db, **options)
        self._players = PlayerRepository(db, **options)
        self._matches = MatchRepository(db, **options)
        self._groups = GroupRepository(db, **options)
        self._notifications = NotificationRepository(db, **options)
        self._accounts = AccountRepository(db, **options)
        self._sessions = SessionRepository(db, **options)
        self._verification_tokens = VerificationTokenRepository(db, **options)

    @classmethod
    async def from_connection(cls, connection: MongoConnection) -> "DatabaseService":
        """Connect (if needed) and build the service on the connection's database."""
        db = await connection.connect()
        return cls(db, supports_transactions=connection.supports_transactions)

    @property
    def users(self) -> UserRepository:
        return self._users

    @property
    def competitions(self) -> CompetitionRepository:
        return self._competitions

    @property
    def participations(self) -> ParticipationRepository:
        return self._participations

    @property
    def teams(self) -> TeamRepository:
        return self._teams

    @property
    def players(self) -> PlayerRepository:
        return self._players

    @property
    def matches(self) -> MatchRepository:
        return self._matches

    @property
    def groups(self) -> GroupRepository:
        return self._groups

    @property
    def notifications(self) -> NotificationRepository:
        return self._notifications

    @property
    def accounts(self) -> AccountRepository:
        return self._accounts

    @property
    def sessions(self) -> SessionRepository:
        return self._sessions

    @property
    def verification_tokens(self) -> VerificationTokenRepository:
        return self._verification_tokens

    @property
    def repositories(self) -> List[BaseRepository]:
        return [
            self._users,
            self._competitions,
            self._participations,
            self._teams,
            self._players,
            self._matches,
            self._groups,
            self._notifications,
            self._accounts,
            self._sessions,
            self._verification_tokens,
        ]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create every collection's indexes, in parallel."""
        logger.info("Creating database indexes...")
        results = await asyncio.gather(
            *(repo.create_indexes() for repo in self.repositories),
            return_exceptions=True,
        )
        for repo, result in zip(self.repositories, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Index creation failed for {repo.collection_name}: {result}",
                    exc_info=result,
                )
        logger.info("Database indexes ready")

    async def cleanup(self) -> Dict[str, int]:
        """
        Purge expired sessions, expired verification tokens and old read
        notifications, in parallel.

        Returns:
            Counts removed per kind
        """
        retention_days = int(
            os.getenv("NOTIFICATION_RETENTION_DAYS", str(NOTIFICATION_RETENTION_DAYS))
        )
        sessions, tokens, notifications = await asyncio.gather(
            self._sessions.delete_expired(),
            self._verification_tokens.delete_expired(),
            self._notifications.delete_old_notifications(retention_days),
        )
        logger.info(
            f"Cleanup removed {sessions} expired session(s), {tokens} expired token(s) "
            f"and {notifications} old notification(s)"
        )
        return {
            "expiredSessions": sessions,
            "expiredTokens": tokens,
            "oldNotifications": notifications,
        }

    async def _collection_health(self, name: str) -> Dict[str, int]:
        collection = self.db[name]
        documents, indexes = await asyncio.gather(
            collection.count_documents({}),
            collection.index_information(),
        )
        return {"documents": documents, "indexes": len(indexes)}

    async def health_check(self) -> Dict[str, Any]:
        """
        Check every collection is reachable.

        Returns:
            Dict with status ("healthy" or "unhealthy"), per-collection
            document and index counts, and one error message per failing
            collection
        """
        results = await asyncio.gather(
            *(self._collection_health(name) for name in Collections.ALL),
            return_exceptions=True,
        )
        collections: Dict[str, Dict[str, int]] = {}
        errors: List[str] = []
        for name, result in zip(Collections.ALL, results):
            if isinstance(result, Exception):
                logger.error(f"Health check failed for {name}: {result}")
                errors.append(f"{name}: {result}")
            else:
                collections[name] = result
        return {
            "status": "healthy" if not errors else "unhealthy",
            "collections": collections,
            "errors": errors,
            "timestamp": utcnow(),
        }

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    async def get_global_stats(self) -> Dict[str, Dict[str, int]]:
        """
        Cross-entity counters for the admin dashboard.

        Every counter runs concurrently; if any one fails, all counters are
        reported as zero.
        """
        now = utcnow()
        counts = [
            (Collections.USER, {}),
            (Collections.USER, {"createdAt": {"$gte": days_ago(RECENT_USERS_DAYS)}}),
            (Collections.COMPETITION, {}),
            (Collections.COMPETITION, {"status": {"$in": list(ACTIVE_COMPETITION_STATUSES)}}),
            (Collections.TEAM, {}),
            (Collections.TEAM, {"isActive": True}),
            (Collections.MATCH, {}),
            (Collections.MATCH, {"status": MatchStatus.SCHEDULED.value, "scheduledDate": {"$gt": now}}),
        ]
        try:
            (
                users,
                recent_users,
                competitions,
                active_competitions,
                teams,
                active_teams,
                matches,
                upcoming_matches,
            ) = await asyncio.gather(
                *(self.db[name].count_documents(filter) for name, filter in counts)
            )
        except Exception as e:
            logger.error(f"Error computing global stats: {e}", exc_info=True)
            return _empty_global_stats()
        return {
            "users": {"total": users, "recent": recent_users},
            "competitions": {"total": competitions, "active": active_competitions},
            "teams": {"total": teams, "active": active_teams},
            "matches": {"total": matches, "upcoming": upcoming_matches},
        }

    async def global_search(self, query: str, user_id: Optional[str] = None) -> Dict[str, List[Document]]:
        """
        Case-insensitive substring search across public competitions, active
        teams and users (excluding ``user_id``), at most 10 results each.
        """
        if not query or not query.strip():
            return {"competitions": [], "teams": [], "users": []}
        competitions, teams, users = await asyncio.gather(
            self._competitions.search_competitions(query),
            self._teams.search_teams(query),
            self._users.search_users(query, exclude_user_id=user_id),
        )
        return {"competitions": competitions, "teams": teams, "users": users}

    # ------------------------------------------------------------------
    # Participation workflow
    # ------------------------------------------------------------------

    async def _notify(self, data: Document) -> None:
        try:
            await self._notifications.create_notification(data)
        except (ValidationError, PyMongoError) as e:
            logger.error(f"Failed to notify user {data.get('userId')}: {e}", exc_info=True)

    async def _ensure_capacity(self, competition: Document) -> None:
        capacity = competition.get("maxParticipants")
        if capacity and await self._participations.count_approved(competition["id"]) >= capacity:
            raise ConflictError(COMPETITION_FULL_MESSAGE)

    async def join_competition(
        self, user_id: str, code: str, message: Optional[str] = None
    ) -> Optional[Document]:
        """
        Apply to a competition through its invitation code.

        The competition must be OPEN, inside its registration window and not
        full. The participation starts PENDING, or APPROVED when the
        competition does not require approval. The organizer is notified.

        Returns:
            The participation, or None if no competition has this code

        Raises:
            ValidationError: If registrations are not open
            ConflictError: If the competition is full or the user already applied
        """
        competition = await self._competitions.find_by_unique_code(code)
        if competition is None:
            return None
        if competition.get("status") != CompetitionStatus.OPEN.value:
            raise ValidationError("Cette compétition n'accepte pas d'inscriptions")

        now = utcnow()
        opens = competition.get("registrationStartDate")
        deadline = competition.get("registrationDeadline")
        if opens is not None and now < opens:
            raise ValidationError("Les inscriptions ne sont pas encore ouvertes")
        if deadline is not None and now > deadline:
            raise ValidationError("La date limite d'inscription est dépassée")
        await self._ensure_capacity(competition)

        auto_approve = not competition.get("requiresApproval", True)
        data: Document = {
            "competitionId": competition["id"],
            "participantId": user_id,
            "message": message,
        }
        if auto_approve:
            data["status"] = ParticipationStatus.APPROVED.value
            data["approvalDate"] = now
        participation = await self._participations.create_participation(data)
        if participation is None:
            return None

        await self._notify({
            "userId": competition["organizerId"],
            "title": "Nouvelle demande de participation",
            "message": f"Une nouvelle demande de participation a été reçue pour « {competition['name']} »",
            "type": NotificationType.INFO.value,
            "category": NotificationCategory.PARTICIPATION.value,
            "relatedId": participation["id"],
            "relatedType": RelatedType.PARTICIPATION.value,
            "actionUrl": f"/organizer/participations/{participation['id']}",
        })
        logger.info(
            f"User {user_id} joined competition {competition['id']} "
            f"({participation['status']})"
        )
        return participation

    async def approve_participation(self, participation_id: str) -> Optional[Document]:
        """
        Approve a pending participation and notify the participant.

        Returns:
            The approved participation, or None if it does not exist

        Raises:
            ConflictError: If the competition is already full
            InvalidTransitionError: If the participation is not PENDING
        """
        participation = await self._participations.find_by_id(participation_id)
        if participation is None:
            return None
        competition = await self._competitions.find_by_id(participation["competitionId"])
        if competition is not None:
            await self._ensure_capacity(competition)

        approved = await self._participations.approve_participation(participation_id)
        if approved is None:
            return None
        name = competition["name"] if competition else ""
        await self._notify({
            "userId": approved["participantId"],
            "title": "Participation approuvée",
            "message": f"Votre participation à « {name} » a été approuvée",
            "type": NotificationType.SUCCESS.value,
            "category": NotificationCategory.PARTICIPATION.value,
            "relatedId": approved["competitionId"],
            "relatedType": RelatedType.COMPETITION.value,
            "actionUrl": f"/participant/competitions/{approved['competitionId']}",
        })
        return approved

    async def reject_participation(self, participation_id: str, reason: str) -> Optional[Document]:
        """
        Reject a participation with a reason and notify the participant.

        Returns:
            The rejected participation, or None if it does not exist

        Raises:
            ValidationError: If the reason is blank
            InvalidTransitionError: If the participation cannot be rejected
        """
        rejected = await self._participations.reject_participation(participation_id, reason)
        if rejected is None:
            return None
        competition = await self._competitions.find_by_id(rejected["competitionId"])
        name = competition["name"] if competition else ""
        await self._notify({
            "userId": rejected["participantId"],
            "title": "Participation refusée",
            "message": f"Votre participation à « {name} » a été refusée: {rejected['rejectionReason']}",
            "type": NotificationType.WARNING.value,
            "category": NotificationCategory.PARTICIPATION.value,
            "relatedId": rejected["competitionId"],
            "relatedType": RelatedType.COMPETITION.value,
        })
        return rejected
