"""
Enums and collection names for the competition document store.
"""

import enum


class Collections:
    """Collection names, one per entity."""

    USER = "User"
    COMPETITION = "Competition"
    PARTICIPATION = "Participation"
    TEAM = "Team"
    PLAYER = "Player"
    MATCH = "Match"
    GROUP = "Group"
    NOTIFICATION = "Notification"
    ACCOUNT = "Account"
    SESSION = "Session"
    VERIFICATION_TOKEN = "VerificationToken"

    ALL = (
        USER,
        COMPETITION,
        PARTICIPATION,
        TEAM,
        PLAYER,
        MATCH,
        GROUP,
        NOTIFICATION,
        ACCOUNT,
        SESSION,
        VERIFICATION_TOKEN,
    )


class UserRole(str, enum.Enum):
    """User role enum."""

    ADMIN = "ADMIN"
    ORGANIZER = "ORGANIZER"
    PARTICIPANT = "PARTICIPANT"


class CompetitionCategory(str, enum.Enum):
    """Sport played in a competition."""

    FOOTBALL = "FOOTBALL"
    BASKETBALL = "BASKETBALL"
    VOLLEYBALL = "VOLLEYBALL"
    HANDBALL = "HANDBALL"
    TENNIS = "TENNIS"
    MARACANA = "MARACANA"
    OTHER = "OTHER"


class CompetitionType(str, enum.Enum):
    """Competition format."""

    ROUND_ROBIN = "ROUND_ROBIN"
    GROUPS = "GROUPS"
    KNOCKOUT = "KNOCKOUT"
    SINGLE_ELIMINATION = "SINGLE_ELIMINATION"
    DOUBLE_ELIMINATION = "DOUBLE_ELIMINATION"
    SWISS_SYSTEM = "SWISS_SYSTEM"


class CompetitionStatus(str, enum.Enum):
    """Competition lifecycle status."""

    DRAFT = "DRAFT"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


ACTIVE_COMPETITION_STATUSES = (CompetitionStatus.OPEN.value, CompetitionStatus.IN_PROGRESS.value)


class OffsideRule(str, enum.Enum):
    ENABLED = "ENABLED"
    DISABLED = "DISABLED"


class SubstitutionRule(str, enum.Enum):
    LIMITED = "LIMITED"
    UNLIMITED = "UNLIMITED"
    FLYING = "FLYING"


class YellowCardRule(str, enum.Enum):
    STANDARD = "STANDARD"
    STRICT = "STRICT"
    LENIENT = "LENIENT"


class MatchDuration(str, enum.Enum):
    SHORT = "SHORT"
    STANDARD = "STANDARD"
    EXTENDED = "EXTENDED"


class ParticipationStatus(str, enum.Enum):
    """Participation request status."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    ACCEPTED = "ACCEPTED"  # legacy spelling of APPROVED
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


APPROVED_PARTICIPATION_STATUSES = (
    ParticipationStatus.APPROVED.value,
    ParticipationStatus.ACCEPTED.value,
)


class PlayerPosition(str, enum.Enum):
    """Player position enum."""

    GOALKEEPER = "GOALKEEPER"
    DEFENDER = "DEFENDER"
    MIDFIELDER = "MIDFIELDER"
    FORWARD = "FORWARD"
    OTHER = "OTHER"


class MatchStatus(str, enum.Enum):
    """Match lifecycle status."""

    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    POSTPONED = "POSTPONED"


class NotificationType(str, enum.Enum):
    """Notification severity."""

    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class NotificationCategory(str, enum.Enum):
    """Notification category."""

    COMPETITION = "COMPETITION"
    TEAM = "TEAM"
    MATCH = "MATCH"
    SYSTEM = "SYSTEM"
    PARTICIPATION = "PARTICIPATION"


class RelatedType(str, enum.Enum):
    """Kind of record a notification points at (resolved by the caller)."""

    USER = "USER"
    COMPETITION = "COMPETITION"
    PARTICIPATION = "PARTICIPATION"
    TEAM = "TEAM"
    PLAYER = "PLAYER"
    MATCH = "MATCH"
    GROUP = "GROUP"
