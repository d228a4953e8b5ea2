"""
Unit tests for the schema validators.

Covers required fields, enum checks, date coercion, defaults, partial
validation and the cross-field rules.
"""

from datetime import datetime, timezone

import pytest
from bson import ObjectId

from compete.database import validation
from compete.database.errors import ValidationError
from compete.models.schemas import CompetitionSchema

ORGANIZER_ID = str(ObjectId())


def _competition(**extra):
    return {"name": "Ligue des quartiers", "category": "FOOTBALL", "organizerId": ORGANIZER_ID, **extra}


# ============================================================================
# Required fields
# ============================================================================


def test_missing_fields_are_all_named():
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_user({"email": "a@example.com"})

    err = exc_info.value
    assert set(err.missing_fields) == {"password", "firstName", "lastName"}
    assert "password" in str(err)
    assert "firstName" in str(err)
    assert "lastName" in str(err)


def test_blank_string_counts_as_missing():
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_group({"name": "   ", "competitionId": str(ObjectId())})
    assert exc_info.value.missing_fields == ["name"]


def test_invalid_enum_value_is_named():
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_competition(_competition(category="CRICKET"))

    err = exc_info.value
    assert err.invalid_fields == {"category": "CRICKET"}
    assert "CRICKET" in str(err)


def test_malformed_reference_is_invalid():
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_team({"name": "A", "competitionId": "pas-un-id", "captainId": str(ObjectId())})
    assert "competitionId" in exc_info.value.invalid_fields


def test_missing_and_invalid_reported_together():
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_match({
            "competitionId": str(ObjectId()),
            "homeTeamId": str(ObjectId()),
            "status": "FINISHED",
        })

    err = exc_info.value
    assert set(err.missing_fields) == {"awayTeamId", "scheduledDate"}
    assert "status" in err.invalid_fields


# ============================================================================
# Coercion and defaults
# ============================================================================


def test_defaults_are_filled():
    doc = validation.validate_competition(_competition())

    assert doc["status"] == "DRAFT"
    assert doc["isPublic"] is True
    assert doc["requiresApproval"] is True
    assert doc["type"] == "ROUND_ROBIN"


def test_user_defaults_and_email_normalization():
    doc = validation.validate_user({
        "email": "  Awa.Kone@Example.COM ",
        "password": "secret",
        "firstName": "Awa",
        "lastName": "Koné",
    })

    assert doc["email"] == "awa.kone@example.com"
    assert doc["role"] == "PARTICIPANT"
    assert doc["isVerified"] is False


def test_iso_string_dates_become_aware_utc():
    doc = validation.validate_competition(_competition(startDate="2025-03-01T10:00:00+02:00"))

    assert doc["startDate"] == datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
    assert doc["startDate"].tzinfo is not None


def test_unix_timestamp_is_coerced():
    doc = validation.validate_session({
        "sessionToken": "tok",
        "userId": str(ObjectId()),
        "expires": 1735689600,
    })
    assert doc["expires"] == datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_object_id_reference_becomes_string():
    organizer = ObjectId()
    doc = validation.validate_competition(_competition(organizerId=organizer))
    assert doc["organizerId"] == str(organizer)


def test_unknown_fields_are_kept():
    doc = validation.validate_group({"name": "Poule A", "competitionId": str(ObjectId()), "color": "bleu"})
    assert doc["color"] == "bleu"


def test_legacy_competition_field_names():
    doc = validation.validate_competition({
        "title": "Tournoi",
        "category": "BASKETBALL",
        "organizerId": ORGANIZER_ID,
        "registrationEndDate": "2030-01-01T00:00:00Z",
    })

    assert doc["name"] == "Tournoi"
    assert "title" not in doc
    assert doc["registrationDeadline"] == datetime(2030, 1, 1, tzinfo=timezone.utc)


def test_player_full_name_is_split():
    doc = validation.validate_player({"name": "Didier Drogba", "teamId": str(ObjectId()), "jerseyNumber": 11})
    assert doc["firstName"] == "Didier"
    assert doc["lastName"] == "Drogba"


@pytest.mark.parametrize("number", [0, 100])
def test_jersey_number_out_of_range(number):
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_player({
            "firstName": "Yaya",
            "lastName": "Touré",
            "teamId": str(ObjectId()),
            "jerseyNumber": number,
        })
    assert "jerseyNumber" in exc_info.value.invalid_fields


# ============================================================================
# Partial validation
# ============================================================================


def test_partial_only_checks_supplied_fields():
    patch = validation.validate_competition({"description": "Nouvelle description"}, partial=True)
    assert patch == {"description": "Nouvelle description"}


def test_partial_rejects_bad_enum():
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_match({"status": "PAUSED"}, partial=True)
    assert "status" in exc_info.value.invalid_fields


def test_partial_none_on_required_field_is_missing():
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_team({"name": None}, partial=True)
    assert exc_info.value.missing_fields == ["name"]


def test_partial_none_on_optional_field_is_kept():
    patch = validation.validate_team({"groupId": None}, partial=True)
    assert patch == {"groupId": None}


def test_partial_does_not_fill_defaults():
    patch = validation.validate_player({"position": "FORWARD"}, partial=True)
    assert patch == {"position": "FORWARD"}


# ============================================================================
# Cross-field rules
# ============================================================================


def test_end_date_before_start_date():
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_competition(_competition(
            startDate="2030-05-10T00:00:00Z",
            endDate="2030-05-01T00:00:00Z",
        ))
    assert "endDate" in exc_info.value.invalid_fields


def test_max_participants_below_min():
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_competition(_competition(minParticipants=8, maxParticipants=4))
    assert "maxParticipants" in exc_info.value.invalid_fields


def test_open_competition_needs_deadline():
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_competition(_competition(status="OPEN"))
    assert "registrationDeadline" in exc_info.value.invalid_fields


def test_team_cannot_play_itself():
    team_id = str(ObjectId())
    with pytest.raises(ValidationError) as exc_info:
        validation.validate_match({
            "competitionId": str(ObjectId()),
            "homeTeamId": team_id,
            "awayTeamId": team_id,
            "scheduledDate": "2030-01-01T15:00:00Z",
        })
    assert "awayTeamId" in exc_info.value.invalid_fields


def test_check_cross_field_rules_on_merged_document():
    merged = {
        "status": "OPEN",
        "registrationDeadline": None,
        "startDate": datetime(2030, 1, 1, tzinfo=timezone.utc),
    }
    with pytest.raises(ValidationError):
        validation.check_cross_field_rules(CompetitionSchema, merged)


# ============================================================================
# Dispatch by collection
# ============================================================================


def test_validate_document_dispatches_by_collection():
    doc = validation.validate_document("Notification", {
        "userId": str(ObjectId()),
        "title": "Bienvenue",
        "message": "Votre compte est prêt",
    })
    assert doc["type"] == "INFO"
    assert doc["category"] == "SYSTEM"
    assert doc["isRead"] is False


def test_validate_document_unknown_collection_passes_through():
    assert validation.validate_document("Unknown", {"a": 1}) == {"a": 1}
