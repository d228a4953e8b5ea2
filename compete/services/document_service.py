"""
Collection-addressed document helpers.

For callers that only know a collection name (admin tooling, scripts). Each
helper delegates to the entity repository, so documents go through the same
validation, reference normalization and timestamping as the typed API.
"""

from typing import Any, Dict, List, Optional, Type

from compete.database.models import Collections
from compete.repositories.auth_repositories import (
    AccountRepository,
    SessionRepository,
    VerificationTokenRepository,
)
from compete.repositories.base import BaseRepository, Document, SortSpec
from compete.repositories.competition_repository import CompetitionRepository
from compete.repositories.group_repository import GroupRepository
from compete.repositories.match_repository import MatchRepository
from compete.repositories.notification_repository import NotificationRepository
from compete.repositories.participation_repository import ParticipationRepository
from compete.repositories.player_repository import PlayerRepository
from compete.repositories.team_repository import TeamRepository
from compete.repositories.user_repository import UserRepository

REPOSITORIES: Dict[str, Type[BaseRepository]] = {
    Collections.USER: UserRepository,
    Collections.COMPETITION: CompetitionRepository,
    Collections.PARTICIPATION: ParticipationRepository,
    Collections.TEAM: TeamRepository,
    Collections.PLAYER: PlayerRepository,
    Collections.MATCH: MatchRepository,
    Collections.GROUP: GroupRepository,
    Collections.NOTIFICATION: NotificationRepository,
    Collections.ACCOUNT: AccountRepository,
    Collections.SESSION: SessionRepository,
    Collections.VERIFICATION_TOKEN: VerificationTokenRepository,
}


def get_repository(db, collection_name: str) -> BaseRepository:
    """
    Build the repository for ``collection_name``.

    Raises:
        ValueError: If the collection is unknown
    """
    repository_class = REPOSITORIES.get(collection_name)
    if repository_class is None:
        raise ValueError(f"Unknown collection: {collection_name}")
    return repository_class(db)


async def create_document(db, collection_name: str, data: Document) -> Optional[Document]:
    """Validate and insert a document into the named collection."""
    return await get_repository(db, collection_name).create(data)


async def get_document(db, collection_name: str, document_id: str) -> Optional[Document]:
    return await get_repository(db, collection_name).find_by_id(document_id)


async def get_documents(
    db,
    collection_name: str,
    filter: Optional[Dict[str, Any]] = None,
    limit: int = 0,
    sort: SortSpec = None,
) -> List[Document]:
    return await get_repository(db, collection_name).find_many(filter, sort=sort, limit=limit)


async def update_document(db, collection_name: str, document_id: str, data: Document) -> Optional[Document]:
    """Apply a validated partial update; None if the document does not exist."""
    return await get_repository(db, collection_name).update_by_id(document_id, data)


async def delete_document(db, collection_name: str, document_id: str) -> bool:
    return await get_repository(db, collection_name).delete_by_id(document_id)


async def count_documents(db, collection_name: str, filter: Optional[Dict[str, Any]] = None) -> int:
    return await get_repository(db, collection_name).count(filter)
