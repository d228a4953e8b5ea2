"""
Tests for the competition repository: invitation codes, public listing,
search, joined details and organizer statistics.
"""

from datetime import timedelta

import pytest
from bson import ObjectId

from compete.database.errors import ValidationError
from compete.utils.constants import UNIQUE_CODE_ALPHABET, UNIQUE_CODE_LENGTH
from compete.utils.datetime_utils import utcnow


@pytest.fixture
def competitions(service):
    return service.competitions


def _data(organizer, **extra):
    return {"name": "Tournoi", "category": "FOOTBALL", "organizerId": organizer["id"], **extra}


# ============================================================================
# Invitation codes
# ============================================================================


@pytest.mark.asyncio
async def test_create_generates_invitation_code(competitions, organizer):
    competition = await competitions.create(_data(organizer, uniqueCode="MINE"))

    code = competition["uniqueCode"]
    assert code != "MINE"
    assert len(code) == UNIQUE_CODE_LENGTH
    assert set(code) <= set(UNIQUE_CODE_ALPHABET)


@pytest.mark.asyncio
async def test_find_by_unique_code_is_case_insensitive(competitions, competition):
    found = await competitions.find_by_unique_code(f"  {competition['uniqueCode'].lower()} ")
    assert found["id"] == competition["id"]
    assert await competitions.find_by_unique_code("") is None


@pytest.mark.asyncio
async def test_code_collision_draws_a_new_code(competitions, organizer, monkeypatch):
    first = await competitions.create(_data(organizer))
    codes = iter([first["uniqueCode"], "ZZZZZZ"])
    monkeypatch.setattr(
        "compete.repositories.competition_repository.generate_unique_code", lambda: next(codes)
    )

    second = await competitions.create(_data(organizer, name="Autre tournoi"))
    assert second["uniqueCode"] == "ZZZZZZ"


@pytest.mark.asyncio
async def test_update_cannot_change_invitation_code(competitions, competition):
    updated = await competitions.update_by_id(competition["id"], {"uniqueCode": "AAAAAA", "venue": "Stade"})
    assert updated["uniqueCode"] == competition["uniqueCode"]
    assert updated["venue"] == "Stade"


# ============================================================================
# Validation on create and update
# ============================================================================


@pytest.mark.asyncio
async def test_create_rejects_invalid_category(competitions, organizer):
    with pytest.raises(ValidationError):
        await competitions.create(_data(organizer, category="CURLING"))


@pytest.mark.asyncio
async def test_update_checks_rules_against_stored_document(competitions, competition):
    too_early = competition["startDate"] - timedelta(days=1)
    with pytest.raises(ValidationError) as exc_info:
        await competitions.update_by_id(competition["id"], {"endDate": too_early})
    assert "endDate" in exc_info.value.invalid_fields


@pytest.mark.asyncio
async def test_update_status(competitions, competition):
    updated = await competitions.update_status(competition["id"], "CLOSED")
    assert updated["status"] == "CLOSED"

    with pytest.raises(ValidationError):
        await competitions.update_status(competition["id"], "FROZEN")


# ============================================================================
# Public listing and search
# ============================================================================


@pytest.mark.asyncio
async def test_private_competitions_never_listed(competitions, organizer):
    await competitions.create(_data(organizer, name="Privé", isPublic=False, country="CI"))
    public = await competitions.create(_data(organizer, name="Public", country="CI"))

    for filters in [None, {"country": "CI"}, {"search": "priv"}, {"category": "FOOTBALL"}]:
        result = await competitions.find_public_competitions(filters)
        assert all(c["isPublic"] for c in result["competitions"])
        assert all(c["name"] != "Privé" for c in result["competitions"])

    result = await competitions.find_public_competitions({"country": "CI"})
    assert [c["id"] for c in result["competitions"]] == [public["id"]]


@pytest.mark.asyncio
async def test_public_listing_is_paginated_and_sorted(competitions, organizer):
    now = utcnow()
    for days in [30, 10, 20]:
        await competitions.create(_data(organizer, name=f"J+{days}", startDate=now + timedelta(days=days)))

    first = await competitions.find_public_competitions({"page": 1, "limit": 2})
    second = await competitions.find_public_competitions({"page": 2, "limit": 2})

    assert [c["name"] for c in first["competitions"]] == ["J+10", "J+20"]
    assert [c["name"] for c in second["competitions"]] == ["J+30"]
    assert first["total"] == 3
    assert first["totalPages"] == 2
    assert second["page"] == 2


@pytest.mark.asyncio
async def test_public_listing_search_matches_description(competitions, organizer):
    await competitions.create(_data(organizer, name="Coupe", description="Maracana du Plateau"))
    await competitions.create(_data(organizer, name="Ligue", description="Basket"))

    result = await competitions.find_public_competitions({"search": "plateau"})
    assert [c["name"] for c in result["competitions"]] == ["Coupe"]


@pytest.mark.asyncio
async def test_search_competitions_by_city(competitions, organizer, competition):
    await competitions.create(_data(organizer, name="Caché", city="Abidjan", isPublic=False))

    results = await competitions.search_competitions("abidjan")
    assert [c["id"] for c in results] == [competition["id"]]


@pytest.mark.asyncio
async def test_find_by_organizer(competitions, organizer, competition):
    results = await competitions.find_by_organizer(organizer["id"])
    assert [c["id"] for c in results] == [competition["id"]]
    assert await competitions.find_by_organizer("nope") == []


# ============================================================================
# Joined details and statistics
# ============================================================================


@pytest.mark.asyncio
async def test_get_competition_with_details(service, competition, organizer, make_user, team):
    first = await make_user("a@example.com")
    second = await make_user("b@example.com")
    approved = await service.participations.create_participation(
        {"competitionId": competition["id"], "participantId": first["id"]}
    )
    await service.participations.approve_participation(approved["id"])
    await service.participations.create_participation(
        {"competitionId": competition["id"], "participantId": second["id"]}
    )

    details = await service.competitions.get_competition_with_details(competition["id"])

    assert details["organizer"]["id"] == organizer["id"]
    assert "password" not in details["organizer"]
    assert details["participationCount"] == 2
    assert details["approvedParticipationCount"] == 1
    assert details["teamCount"] == 1
    assert details["teams"][0]["id"] == team["id"]
    assert await service.competitions.get_competition_with_details(str(ObjectId())) is None


@pytest.mark.asyncio
async def test_get_stats_by_organizer(service, organizer, competition, make_user):
    await service.competitions.create(_data(organizer, category="BASKETBALL"))
    user = await make_user("a@example.com")
    participation = await service.participations.create_participation(
        {"competitionId": competition["id"], "participantId": user["id"]}
    )
    await service.participations.approve_participation(participation["id"])

    stats = await service.competitions.get_stats_by_organizer(organizer["id"])

    assert stats["total"] == 2
    assert stats["byStatus"] == {"OPEN": 1, "DRAFT": 1}
    assert stats["byCategory"] == {"FOOTBALL": 1, "BASKETBALL": 1}
    assert stats["totalParticipants"] == 1


@pytest.mark.asyncio
async def test_count_active(competitions, organizer, competition):
    await competitions.create(_data(organizer))
    assert await competitions.count_active() == 1
