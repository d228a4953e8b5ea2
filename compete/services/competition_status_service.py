"""
Date-driven competition status transitions.

    OPEN -> CLOSED          registration deadline passed, competition not started
    OPEN -> IN_PROGRESS     registration deadline passed, competition started
    CLOSED -> IN_PROGRESS   competition started
    IN_PROGRESS -> COMPLETED  end date passed

DRAFT competitions wait for manual publication; COMPLETED and CANCELLED are
final. One step is applied per evaluation.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from compete.database.models import CompetitionStatus
from compete.repositories.competition_repository import CompetitionRepository
from compete.utils.datetime_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

_REASONS = {
    (CompetitionStatus.OPEN.value, CompetitionStatus.CLOSED.value): "Fermeture des inscriptions",
    (CompetitionStatus.OPEN.value, CompetitionStatus.IN_PROGRESS.value): "Début de la compétition",
    (CompetitionStatus.CLOSED.value, CompetitionStatus.IN_PROGRESS.value): "Début de la compétition",
    (CompetitionStatus.IN_PROGRESS.value, CompetitionStatus.COMPLETED.value): "Fin de la compétition",
}

# Statuses the automation can move out of
AUTOMATED_STATUSES = (
    CompetitionStatus.OPEN.value,
    CompetitionStatus.CLOSED.value,
    CompetitionStatus.IN_PROGRESS.value,
)


def get_status_change_reason(old_status: str, new_status: str) -> str:
    return _REASONS.get((old_status, new_status), "Mise à jour automatique")


def determine_competition_status(competition: Dict[str, Any], now: Optional[datetime] = None) -> str:
    """
    Compute the status a competition should have at ``now``.

    Args:
        competition: Competition document
        now: Reference instant (defaults to the current UTC time)

    Returns:
        The new status, or the current one if nothing changes
    """
    now = ensure_utc(now) if now is not None else utcnow()
    status = competition.get("status")
    deadline = ensure_utc(competition.get("registrationDeadline"))
    start = ensure_utc(competition.get("startDate"))
    end = ensure_utc(competition.get("endDate"))

    if status == CompetitionStatus.OPEN.value:
        if deadline is not None and now > deadline and start is not None:
            if now < start:
                return CompetitionStatus.CLOSED.value
            return CompetitionStatus.IN_PROGRESS.value
        return status

    if status == CompetitionStatus.CLOSED.value:
        if start is not None and now >= start:
            return CompetitionStatus.IN_PROGRESS.value
        return status

    if status == CompetitionStatus.IN_PROGRESS.value:
        if end is not None and now > end:
            return CompetitionStatus.COMPLETED.value
        return status

    return status


async def update_all_competition_statuses(
    competitions: CompetitionRepository, now: Optional[datetime] = None
) -> List[Dict[str, str]]:
    """
    Apply `determine_competition_status` to every competition that can move.

    A failure on one competition is logged and does not stop the others.

    Returns:
        One record per change: competitionId, oldStatus, newStatus, reason
    """
    now = now or utcnow()
    candidates = await competitions.find_many({"status": {"$in": list(AUTOMATED_STATUSES)}})
    updates: List[Dict[str, str]] = []

    for competition in candidates:
        old_status = competition["status"]
        new_status = determine_competition_status(competition, now)
        if new_status == old_status:
            continue
        try:
            updated = await competitions.update_status(competition["id"], new_status)
        except Exception as e:
            logger.error(
                f"Failed to update status of competition {competition['id']}: {e}",
                exc_info=True,
            )
            continue
        if updated is None:
            continue
        updates.append({
            "competitionId": competition["id"],
            "oldStatus": old_status,
            "newStatus": new_status,
            "reason": get_status_change_reason(old_status, new_status),
        })
        logger.info(
            f"Competition {competition['id']} ({competition.get('name')}): "
            f"{old_status} -> {new_status}"
        )

    logger.info(f"Status update finished: {len(updates)} competition(s) changed")
    return updates
