"""
Pydantic document schemas, one per collection.

Each schema is the canonical shape of a stored document: required fields,
enum-typed fields, date fields and defaults. Unknown keys are kept as-is.
Identifiers of referenced documents are carried as 24-character hex strings.
"""

from datetime import datetime
from typing import Annotated, Any, List, Optional

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints

from compete.database.models import (
    CompetitionCategory,
    CompetitionStatus,
    CompetitionType,
    MatchDuration,
    MatchStatus,
    NotificationCategory,
    NotificationType,
    OffsideRule,
    ParticipationStatus,
    PlayerPosition,
    RelatedType,
    SubstitutionRule,
    UserRole,
    YellowCardRule,
)
from compete.utils.constants import MAX_JERSEY_NUMBER, MIN_JERSEY_NUMBER
from compete.utils.datetime_utils import ensure_utc, utcnow


def _coerce_object_id(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, str) and ObjectId.is_valid(value.strip()):
        return value.strip()
    raise ValueError(f"identifiant invalide: {value!r}")


ObjectIdStr = Annotated[str, BeforeValidator(_coerce_object_id)]
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
RequiredStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class DocumentSchema(BaseModel):
    """Fields shared by every stored document."""

    model_config = ConfigDict(extra="allow", use_enum_values=True, validate_default=True)

    createdAt: UtcDatetime = Field(default_factory=utcnow)
    updatedAt: UtcDatetime = Field(default_factory=utcnow)


class UserSchema(DocumentSchema):
    email: RequiredStr
    password: RequiredStr
    firstName: RequiredStr
    lastName: RequiredStr
    phoneNumber: Optional[str] = None
    role: UserRole = UserRole.PARTICIPANT
    country: Optional[str] = None
    city: Optional[str] = None
    commune: Optional[str] = None
    emailVerified: Optional[UtcDatetime] = None
    isVerified: bool = False
    image: Optional[str] = None
    lastLogin: Optional[UtcDatetime] = None


class CompetitionSchema(DocumentSchema):
    name: RequiredStr
    description: Optional[str] = None
    category: CompetitionCategory
    type: CompetitionType = CompetitionType.ROUND_ROBIN
    status: CompetitionStatus = CompetitionStatus.DRAFT
    organizerId: ObjectIdStr
    country: Optional[str] = None
    city: Optional[str] = None
    commune: Optional[str] = None
    address: Optional[str] = None
    venue: Optional[str] = None
    startDate: Optional[UtcDatetime] = None
    endDate: Optional[UtcDatetime] = None
    registrationStartDate: Optional[UtcDatetime] = None
    registrationDeadline: Optional[UtcDatetime] = None
    maxParticipants: Optional[Annotated[int, Field(ge=1)]] = None
    minParticipants: Optional[Annotated[int, Field(ge=0)]] = None
    isPublic: bool = True
    requiresApproval: bool = True
    uniqueCode: Optional[str] = None
    rules: Any = None
    prizes: Any = None
    offsideRule: Optional[OffsideRule] = None
    substitutionRule: Optional[SubstitutionRule] = None
    yellowCardRule: Optional[YellowCardRule] = None
    matchDuration: Optional[MatchDuration] = None
    imageUrl: Optional[str] = None
    bannerUrl: Optional[str] = None


class ParticipationSchema(DocumentSchema):
    competitionId: ObjectIdStr
    participantId: ObjectIdStr
    status: ParticipationStatus = ParticipationStatus.PENDING
    applicationDate: UtcDatetime = Field(default_factory=utcnow)
    approvalDate: Optional[UtcDatetime] = None
    rejectionReason: Optional[str] = None
    message: Optional[str] = None
    notes: Optional[str] = None
    teamName: Optional[str] = None
    teamMembers: Optional[List[str]] = None


class TeamSchema(DocumentSchema):
    name: RequiredStr
    competitionId: ObjectIdStr
    captainId: ObjectIdStr
    groupId: Optional[ObjectIdStr] = None
    description: Optional[str] = None
    logo: Optional[str] = None
    colors: Optional[str] = None
    isActive: bool = True


class PlayerSchema(DocumentSchema):
    firstName: RequiredStr
    lastName: RequiredStr
    teamId: ObjectIdStr
    jerseyNumber: Annotated[int, Field(ge=MIN_JERSEY_NUMBER, le=MAX_JERSEY_NUMBER)]
    position: Optional[PlayerPosition] = None
    dateOfBirth: Optional[UtcDatetime] = None
    nationality: Optional[str] = None
    height: Optional[Annotated[float, Field(gt=0)]] = None
    weight: Optional[Annotated[float, Field(gt=0)]] = None
    isActive: bool = True
    isCaptain: bool = False
    photo: Optional[str] = None


class MatchSchema(DocumentSchema):
    competitionId: ObjectIdStr
    homeTeamId: ObjectIdStr
    awayTeamId: ObjectIdStr
    groupId: Optional[ObjectIdStr] = None
    round: Optional[Annotated[int, Field(ge=1)]] = None
    matchNumber: Optional[Annotated[int, Field(ge=1)]] = None
    scheduledDate: UtcDatetime
    venue: Optional[str] = None
    status: MatchStatus = MatchStatus.SCHEDULED
    homeScore: Optional[Annotated[int, Field(ge=0)]] = None
    awayScore: Optional[Annotated[int, Field(ge=0)]] = None
    startTime: Optional[UtcDatetime] = None
    endTime: Optional[UtcDatetime] = None
    referee: Optional[str] = None
    notes: Optional[str] = None


class GroupSchema(DocumentSchema):
    name: RequiredStr
    competitionId: ObjectIdStr


class NotificationSchema(DocumentSchema):
    userId: ObjectIdStr
    title: RequiredStr
    message: RequiredStr
    type: NotificationType = NotificationType.INFO
    category: NotificationCategory = NotificationCategory.SYSTEM
    isRead: bool = False
    readAt: Optional[UtcDatetime] = None
    relatedId: Optional[str] = None
    relatedType: Optional[RelatedType] = None
    actionUrl: Optional[str] = None
    expiresAt: Optional[UtcDatetime] = None


class AccountSchema(DocumentSchema):
    userId: ObjectIdStr
    type: RequiredStr
    provider: RequiredStr
    providerAccountId: RequiredStr
    refresh_token: Optional[str] = None
    access_token: Optional[str] = None
    expires_at: Optional[int] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None
    id_token: Optional[str] = None
    session_state: Optional[str] = None


class SessionSchema(DocumentSchema):
    sessionToken: RequiredStr
    userId: ObjectIdStr
    expires: UtcDatetime


class VerificationTokenSchema(DocumentSchema):
    identifier: RequiredStr
    token: RequiredStr
    expires: UtcDatetime
