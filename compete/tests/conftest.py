"""
Shared pytest configuration for the data-layer tests.

Tests run against mongomock-motor, an in-memory stand-in for the motor
driver built on mongomock, so repositories run unchanged. No server is
needed and every test starts from an empty database.
"""

import os
from datetime import timedelta

# Cheap hashes keep the user tests fast; must be set before any hashing
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from compete.services.database_service import DatabaseService
from compete.utils.datetime_utils import utcnow


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    return AsyncMongoMockClient()["compete_test"]


@pytest_asyncio.fixture
async def service(db):
    """DatabaseService on the in-memory database, with indexes created."""
    database = DatabaseService(db)
    await database.initialize()
    return database


# ---------------------------------------------------------------------------
# Entity fixtures
# ---------------------------------------------------------------------------


def user_data(email, role="PARTICIPANT", **extra):
    """Minimal valid user payload."""
    return {
        "email": email,
        "password": "motdepasse123",
        "firstName": "Awa",
        "lastName": "Koné",
        "role": role,
        **extra,
    }


@pytest_asyncio.fixture
async def organizer(service):
    return await service.users.create_user(user_data("organisateur@example.com", role="ORGANIZER"))


@pytest_asyncio.fixture
async def participant(service):
    return await service.users.create_user(user_data("joueur@example.com"))


@pytest_asyncio.fixture
async def competition(service, organizer):
    """Public OPEN competition whose registration window is current."""
    now = utcnow()
    return await service.competitions.create({
        "name": "Coupe d'Abidjan",
        "description": "Tournoi de quartier",
        "category": "FOOTBALL",
        "organizerId": organizer["id"],
        "city": "Abidjan",
        "status": "OPEN",
        "registrationStartDate": now - timedelta(days=1),
        "registrationDeadline": now + timedelta(days=7),
        "startDate": now + timedelta(days=10),
        "endDate": now + timedelta(days=40),
        "maxParticipants": 2,
    })


@pytest_asyncio.fixture
async def team(service, competition, organizer):
    return await service.teams.create_team({
        "name": "Les Éléphants",
        "competitionId": competition["id"],
        "captainId": organizer["id"],
    })


@pytest.fixture
def make_user(service):
    """Factory creating users through the repository."""

    async def _make(email, role="PARTICIPANT", **extra):
        return await service.users.create_user(user_data(email, role=role, **extra))

    return _make
