"""
Schema validation for stored documents.

One pure function per entity. Each one checks required fields and enum
values, coerces date-like values (ISO strings, timestamps) to aware UTC
datetimes, fills defaults, and applies the cross-field rules. Failures raise
`ValidationError` naming every offending field, not just the first one.

With ``partial=True`` only the supplied keys are checked, which is what an
update patch needs; defaults are not filled in that mode.
"""

import enum
from functools import lru_cache
from typing import Any, Callable, Dict, List, Tuple, Type

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from compete.database.errors import ValidationError
from compete.database.models import Collections, CompetitionStatus
from compete.models.schemas import (
    AccountSchema,
    CompetitionSchema,
    GroupSchema,
    MatchSchema,
    NotificationSchema,
    ParticipationSchema,
    PlayerSchema,
    SessionSchema,
    TeamSchema,
    UserSchema,
    VerificationTokenSchema,
)

# pydantic error types that mean "the value is not there"
_MISSING_ERROR_TYPES = {"missing", "string_too_short"}

ENTITY_LABELS: Dict[Type[BaseModel], str] = {
    UserSchema: "utilisateur",
    CompetitionSchema: "compétition",
    ParticipationSchema: "participation",
    TeamSchema: "équipe",
    PlayerSchema: "joueur",
    MatchSchema: "match",
    GroupSchema: "groupe",
    NotificationSchema: "notification",
    AccountSchema: "compte",
    SessionSchema: "session",
    VerificationTokenSchema: "jeton de vérification",
}


# ---------------------------------------------------------------------------
# Input preparation (legacy field names, normalization)
# ---------------------------------------------------------------------------


def _prepare_user(data: Dict[str, Any]) -> Dict[str, Any]:
    if isinstance(data.get("email"), str):
        data["email"] = data["email"].strip().lower()
    return data


def _prepare_competition(data: Dict[str, Any]) -> Dict[str, Any]:
    # Older documents used "title" and "registrationEndDate"
    if "title" in data:
        title = data.pop("title")
        data.setdefault("name", title)
    if "registrationEndDate" in data:
        deadline = data.pop("registrationEndDate")
        data.setdefault("registrationDeadline", deadline)
    return data


def _prepare_player(data: Dict[str, Any]) -> Dict[str, Any]:
    name = data.pop("name", None)
    if isinstance(name, str) and name.strip() and not (
        data.get("firstName") or data.get("lastName")
    ):
        first, _, last = name.strip().partition(" ")
        data["firstName"] = first
        data["lastName"] = last.strip() or first
    return data


_PREPARERS: Dict[Type[BaseModel], Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    UserSchema: _prepare_user,
    CompetitionSchema: _prepare_competition,
    PlayerSchema: _prepare_player,
}


# ---------------------------------------------------------------------------
# Cross-field rules
# ---------------------------------------------------------------------------


def _both(doc: Dict[str, Any], first: str, second: str) -> bool:
    return doc.get(first) is not None and doc.get(second) is not None


def _competition_rules(doc: Dict[str, Any], partial: bool) -> List[Tuple[str, str]]:
    problems = []
    if _both(doc, "startDate", "endDate") and doc["endDate"] < doc["startDate"]:
        problems.append(("endDate", "endDate doit être postérieure ou égale à startDate"))
    if (
        _both(doc, "registrationStartDate", "registrationDeadline")
        and doc["registrationDeadline"] < doc["registrationStartDate"]
    ):
        problems.append((
            "registrationDeadline",
            "registrationDeadline doit être postérieure ou égale à registrationStartDate",
        ))
    if (
        _both(doc, "minParticipants", "maxParticipants")
        and doc["maxParticipants"] < doc["minParticipants"]
    ):
        problems.append((
            "maxParticipants",
            "maxParticipants doit être supérieur ou égal à minParticipants",
        ))
    if doc.get("status") == CompetitionStatus.OPEN.value:
        deadline_missing = (
            doc.get("registrationDeadline") is None
            if not partial
            else ("registrationDeadline" in doc and doc["registrationDeadline"] is None)
        )
        if deadline_missing:
            problems.append((
                "registrationDeadline",
                "une compétition ouverte doit avoir une date limite d'inscription",
            ))
    return problems


def _match_rules(doc: Dict[str, Any], partial: bool) -> List[Tuple[str, str]]:
    if _both(doc, "homeTeamId", "awayTeamId") and doc["homeTeamId"] == doc["awayTeamId"]:
        return [("awayTeamId", "une équipe ne peut pas jouer contre elle-même")]
    return []


_RULES: Dict[Type[BaseModel], Callable[[Dict[str, Any], bool], List[Tuple[str, str]]]] = {
    CompetitionSchema: _competition_rules,
    MatchSchema: _match_rules,
}


def check_cross_field_rules(schema: Type[BaseModel], doc: Dict[str, Any]) -> None:
    """
    Apply the cross-field rules of ``schema`` to a complete document.

    Used on updates once the patch has been merged with the stored document.

    Raises:
        ValidationError: If any rule fails
    """
    rule = _RULES.get(schema)
    problems = rule(doc, False) if rule else []
    if problems:
        _raise(schema, [], {}, problems)


# ---------------------------------------------------------------------------
# Error reporting
# ---------------------------------------------------------------------------


def _raise(
    schema: Type[BaseModel],
    missing: List[str],
    invalid: Dict[str, Any],
    problems: List[Tuple[str, str]],
) -> None:
    label = ENTITY_LABELS.get(schema, schema.__name__)
    parts = []
    if missing:
        parts.append(f"Données {label} incomplètes, champs requis manquants: {', '.join(missing)}")
    if invalid:
        parts.append(
            "Valeurs invalides: "
            + ", ".join(f"{field}={value!r}" for field, value in invalid.items())
        )
    for field, reason in problems:
        invalid.setdefault(field, reason)
        parts.append(reason)
    raise ValidationError("; ".join(parts), missing_fields=missing, invalid_fields=invalid)


def _collect(errors: List[Dict[str, Any]]) -> Tuple[List[str], Dict[str, Any]]:
    missing: List[str] = []
    invalid: Dict[str, Any] = {}
    for err in errors:
        field = ".".join(str(part) for part in err.get("loc", ())) or "document"
        if err["type"] in _MISSING_ERROR_TYPES:
            if field not in missing:
                missing.append(field)
        else:
            invalid[field] = err.get("input")
    return missing, invalid


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@lru_cache(maxsize=None)
def _field_adapter(schema: Type[BaseModel], name: str) -> TypeAdapter:
    return TypeAdapter(schema.model_fields[name].rebuild_annotation())


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _validate_partial(schema: Type[BaseModel], data: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    errors: List[Dict[str, Any]] = []
    for key, value in data.items():
        field = schema.model_fields.get(key)
        if field is None:
            result[key] = value
            continue
        if value is None:
            if field.is_required():
                errors.append({"type": "missing", "loc": (key,), "input": None})
            else:
                result[key] = None
            continue
        try:
            result[key] = _plain(_field_adapter(schema, key).validate_python(value))
        except PydanticValidationError as e:
            for err in e.errors():
                errors.append({**err, "loc": (key, *err["loc"])})

    missing, invalid = _collect(errors)
    rule = _RULES.get(schema)
    problems = rule(result, True) if rule else []
    if missing or invalid or problems:
        _raise(schema, missing, invalid, problems)
    return result


def validate(schema: Type[BaseModel], data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate ``data`` against ``schema``.

    Args:
        schema: Document schema class
        data: Caller-supplied document (not mutated)
        partial: Validate an update patch instead of a full document

    Returns:
        A new dict with coerced values (and defaults, unless partial)

    Raises:
        ValidationError: Naming every missing and invalid field
    """
    data = dict(data or {})
    prepare = _PREPARERS.get(schema)
    if prepare:
        data = prepare(data)

    if partial:
        return _validate_partial(schema, data)

    try:
        document = schema.model_validate(data).model_dump()
    except PydanticValidationError as e:
        missing, invalid = _collect(e.errors())
        _raise(schema, missing, invalid, [])

    rule = _RULES.get(schema)
    problems = rule(document, False) if rule else []
    if problems:
        _raise(schema, [], {}, problems)
    return document


def validate_user(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(UserSchema, data, partial)


def validate_competition(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(CompetitionSchema, data, partial)


def validate_participation(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(ParticipationSchema, data, partial)


def validate_team(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(TeamSchema, data, partial)


def validate_player(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(PlayerSchema, data, partial)


def validate_match(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(MatchSchema, data, partial)


def validate_group(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(GroupSchema, data, partial)


def validate_notification(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(NotificationSchema, data, partial)


def validate_account(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(AccountSchema, data, partial)


def validate_session(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(SessionSchema, data, partial)


def validate_verification_token(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    return validate(VerificationTokenSchema, data, partial)


SCHEMAS: Dict[str, Type[BaseModel]] = {
    Collections.USER: UserSchema,
    Collections.COMPETITION: CompetitionSchema,
    Collections.PARTICIPATION: ParticipationSchema,
    Collections.TEAM: TeamSchema,
    Collections.PLAYER: PlayerSchema,
    Collections.MATCH: MatchSchema,
    Collections.GROUP: GroupSchema,
    Collections.NOTIFICATION: NotificationSchema,
    Collections.ACCOUNT: AccountSchema,
    Collections.SESSION: SessionSchema,
    Collections.VERIFICATION_TOKEN: VerificationTokenSchema,
}


def validate_document(collection: str, data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate ``data`` for the named collection (unknown collections pass through)."""
    schema = SCHEMAS.get(collection)
    if schema is None:
        return dict(data or {})
    return validate(schema, data, partial)
