"""
Tests for the team repository: case-insensitive names per competition,
group assignment, activation and the joined roster view.
"""

import pytest
from bson import ObjectId

from compete.database.errors import ConflictError
from compete.repositories.team_repository import TEAM_NAME_TAKEN_MESSAGE, name_key


@pytest.fixture
def teams(service):
    return service.teams


def _team(competition, captain, name, **extra):
    return {"name": name, "competitionId": competition["id"], "captainId": captain["id"], **extra}


def test_name_key():
    assert name_key("  Les Éléphants ") == "les éléphants"


# ============================================================================
# Name uniqueness
# ============================================================================


@pytest.mark.asyncio
async def test_same_name_any_case_conflicts(teams, team, competition, organizer):
    with pytest.raises(ConflictError) as exc_info:
        await teams.create_team(_team(competition, organizer, "LES ÉLÉPHANTS"))
    assert str(exc_info.value) == TEAM_NAME_TAKEN_MESSAGE


@pytest.mark.asyncio
async def test_unique_index_backs_the_name_precheck(teams, team, competition, organizer):
    with pytest.raises(ConflictError):
        await teams.create(_team(competition, organizer, "les éléphants "))


@pytest.mark.asyncio
async def test_same_name_in_another_competition_is_allowed(service, teams, team, organizer):
    other = await service.competitions.create(
        {"name": "Autre", "category": "FOOTBALL", "organizerId": organizer["id"]}
    )
    created = await teams.create_team(_team(other, organizer, "Les Éléphants"))
    assert created["competitionId"] == other["id"]


@pytest.mark.asyncio
async def test_check_name_exists(teams, team, competition):
    assert await teams.check_name_exists("les éléphants", competition["id"]) is True
    assert await teams.check_name_exists("les éléphants", competition["id"], exclude_team_id=team["id"]) is False
    assert await teams.check_name_exists("Les Lions", competition["id"]) is False


@pytest.mark.asyncio
async def test_rename_to_taken_name_conflicts(teams, team, competition, organizer):
    other = await teams.create_team(_team(competition, organizer, "Les Lions"))

    with pytest.raises(ConflictError):
        await teams.update_by_id(other["id"], {"name": "les ÉLÉPHANTS"})

    # Changing only the casing of its own name is fine
    renamed = await teams.update_by_id(other["id"], {"name": "LES LIONS"})
    assert renamed["name"] == "LES LIONS"
    assert renamed["nameKey"] == "les lions"


# ============================================================================
# Mutations and lookups
# ============================================================================


@pytest.mark.asyncio
async def test_assign_and_remove_group(service, teams, team, competition):
    group = await service.groups.create_group({"name": "Poule A", "competitionId": competition["id"]})

    assigned = await teams.assign_to_group(team["id"], group["id"])
    assert assigned["groupId"] == group["id"]
    assert [t["id"] for t in await teams.find_by_group(group["id"])] == [team["id"]]

    removed = await teams.remove_from_group(team["id"])
    assert "groupId" not in removed
    assert await teams.find_by_group(group["id"]) == []


@pytest.mark.asyncio
async def test_activate_and_deactivate(teams, team, competition):
    assert (await teams.deactivate_team(team["id"]))["isActive"] is False
    assert await teams.find_by_competition(competition["id"], active_only=True) == []
    assert len(await teams.find_by_competition(competition["id"])) == 1

    assert (await teams.activate_team(team["id"]))["isActive"] is True


@pytest.mark.asyncio
async def test_find_by_captain(teams, team, organizer):
    assert [t["id"] for t in await teams.find_by_captain(organizer["id"])] == [team["id"]]
    assert await teams.find_by_captain("bad-id") == []


@pytest.mark.asyncio
async def test_search_teams_only_active(teams, team, competition, organizer):
    inactive = await teams.create_team(_team(competition, organizer, "Éléphanteaux"))
    await teams.deactivate_team(inactive["id"])

    results = await teams.search_teams("éléphant")
    assert [t["id"] for t in results] == [team["id"]]


# ============================================================================
# Joined views and statistics
# ============================================================================


@pytest.mark.asyncio
async def test_get_team_with_players(service, teams, team, competition, organizer):
    for first, number in [("Yaya", 19), ("Didier", 11)]:
        await service.players.create_player(
            {"firstName": first, "lastName": "X", "teamId": team["id"], "jerseyNumber": number}
        )

    detailed = await teams.get_team_with_players(team["id"])

    assert [p["jerseyNumber"] for p in detailed["players"]] == [11, 19]
    assert detailed["playerCount"] == 2
    assert detailed["captain"]["id"] == organizer["id"]
    assert "password" not in detailed["captain"]
    assert detailed["competition"]["id"] == competition["id"]
    assert detailed["group"] is None
    assert await teams.get_team_with_players(str(ObjectId())) is None


@pytest.mark.asyncio
async def test_get_team_stats(service, teams, team, competition, organizer):
    group = await service.groups.create_group({"name": "Poule A", "competitionId": competition["id"]})
    other = await teams.create_team(_team(competition, organizer, "Les Lions"))
    await teams.assign_to_group(team["id"], group["id"])
    await teams.deactivate_team(other["id"])

    stats = await teams.get_team_stats(competition["id"])

    assert stats == {"total": 2, "active": 1, "inactive": 1, "withGroup": 1}
