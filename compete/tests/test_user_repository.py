"""
Tests for the user repository: email uniqueness, password hashing and
verification, lookups and statistics.
"""

import pytest
from bson import ObjectId

from compete.database.errors import ConflictError, ValidationError
from compete.repositories.user_repository import (
    EMAIL_TAKEN_MESSAGE,
    check_password,
    hash_password,
    normalize_email,
)


@pytest.fixture
def users(service):
    return service.users


def test_hash_and_check_password():
    hashed = hash_password("s3cret")
    assert hashed.startswith("$2")
    assert check_password("s3cret", hashed)
    assert not check_password("wrong", hashed)
    assert not check_password("s3cret", "not-a-hash")


def test_normalize_email():
    assert normalize_email("  Awa@Example.COM ") == "awa@example.com"
    assert normalize_email(None) == ""


# ============================================================================
# createUser
# ============================================================================


@pytest.mark.asyncio
async def test_create_user_hashes_password_and_defaults_role(users, db):
    user = await users.create_user({
        "email": "Awa@Example.com",
        "password": "motdepasse123",
        "firstName": "Awa",
        "lastName": "Koné",
    })

    assert user["email"] == "awa@example.com"
    assert user["role"] == "PARTICIPANT"
    raw = await db["User"].find_one({"_id": ObjectId(user["id"])})
    assert raw["password"] != "motdepasse123"
    assert check_password("motdepasse123", raw["password"])


@pytest.mark.asyncio
async def test_duplicate_email_any_case_conflicts(users, make_user):
    await make_user("joueur@example.com")

    with pytest.raises(ConflictError) as exc_info:
        await make_user("  JOUEUR@example.com")
    assert str(exc_info.value) == EMAIL_TAKEN_MESSAGE


@pytest.mark.asyncio
async def test_unique_index_backs_the_email_precheck(users, make_user):
    await make_user("joueur@example.com")

    # Bypass the pre-check: the unique index must still refuse the insert
    with pytest.raises(ConflictError):
        await users.create({
            "email": "Joueur@Example.com",
            "password": "x",
            "firstName": "B",
            "lastName": "C",
        })


@pytest.mark.asyncio
async def test_phone_number_is_unique_but_optional(users, make_user):
    await make_user("a@example.com")
    await make_user("b@example.com")
    await make_user("c@example.com", phoneNumber="+2250700000001")

    with pytest.raises(ConflictError):
        await make_user("d@example.com", phoneNumber="+2250700000001")


@pytest.mark.asyncio
async def test_create_user_requires_fields(users):
    with pytest.raises(ValidationError) as exc_info:
        await users.create_user({"email": "x@example.com"})
    assert "password" in exc_info.value.missing_fields


# ============================================================================
# verifyPassword / updatePassword
# ============================================================================


@pytest.mark.asyncio
async def test_verify_password(users, make_user):
    await make_user("joueur@example.com")

    user = await users.verify_password("Joueur@Example.com", "motdepasse123")
    assert user is not None
    assert user["email"] == "joueur@example.com"
    assert "password" not in user

    assert await users.verify_password("joueur@example.com", "mauvais") is None
    assert await users.verify_password("inconnu@example.com", "motdepasse123") is None


@pytest.mark.asyncio
async def test_update_password(users, make_user):
    user = await make_user("joueur@example.com")

    assert await users.update_password(user["id"], "nouveau-mot") is True
    assert await users.verify_password("joueur@example.com", "motdepasse123") is None
    assert await users.verify_password("joueur@example.com", "nouveau-mot") is not None
    assert await users.update_password(str(ObjectId()), "x") is False


# ============================================================================
# Lookups
# ============================================================================


@pytest.mark.asyncio
async def test_find_by_email_normalizes(users, make_user):
    user = await make_user("joueur@example.com")

    found = await users.find_by_email("  JOUEUR@EXAMPLE.COM ")
    assert found["id"] == user["id"]
    assert await users.find_by_email("") is None


@pytest.mark.asyncio
async def test_email_exists(users, make_user):
    await make_user("joueur@example.com")
    assert await users.email_exists("Joueur@example.com") is True
    assert await users.email_exists("autre@example.com") is False


@pytest.mark.asyncio
async def test_find_by_role_country_and_phone(users, make_user):
    await make_user("a@example.com", role="ORGANIZER", country="CI")
    await make_user("b@example.com", country="SN", phoneNumber="+221770000000")
    await make_user("c@example.com", country="CI")

    assert [u["email"] for u in await users.find_by_role("ORGANIZER")] == ["a@example.com"]
    assert len(await users.find_by_country("CI")) == 2
    assert (await users.find_by_phone_number(" +221770000000 "))["email"] == "b@example.com"


@pytest.mark.asyncio
async def test_search_users_excludes_caller_and_hides_password(users, make_user):
    caller = await make_user("awa@example.com", firstName="Awa")
    await make_user("awa.traore@example.com", firstName="Awa", lastName="Traoré")
    await make_user("moussa@example.com", firstName="Moussa", lastName="Diallo")

    results = await users.search_users("AWA", exclude_user_id=caller["id"])

    assert [u["email"] for u in results] == ["awa.traore@example.com"]
    assert all("password" not in u for u in results)


# ============================================================================
# Statistics
# ============================================================================


@pytest.mark.asyncio
async def test_get_user_stats(users, make_user):
    await make_user("a@example.com", role="ORGANIZER", country="CI")
    await make_user("b@example.com", country="CI")
    await make_user("c@example.com", country="SN")

    stats = await users.get_user_stats()

    assert stats["total"] == 3
    assert stats["byRole"] == {"ORGANIZER": 1, "PARTICIPANT": 2}
    assert stats["byCountry"] == {"CI": 2, "SN": 1}
    assert stats["recentUsers"] == 3
