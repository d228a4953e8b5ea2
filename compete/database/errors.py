"""
Exception hierarchy for the data layer.

Lookups never raise for a missing record; they return None/False/empty.
The classes below cover configuration, transport, validation, uniqueness
and state-machine violations.
"""

from typing import Iterable, Optional


class ConfigurationError(RuntimeError):
    """Required connection configuration is missing."""


class DatabaseConnectionError(ConnectionError):
    """The database could not be reached or refused the credentials."""


class ValidationError(ValueError):
    """
    A document failed schema validation.

    Attributes:
        missing_fields: Required fields that were absent
        invalid_fields: Mapping of field name -> offending value (or reason)
    """

    def __init__(
        self,
        message: str,
        missing_fields: Optional[Iterable[str]] = None,
        invalid_fields: Optional[dict] = None,
    ):
        super().__init__(message)
        self.missing_fields = list(missing_fields or [])
        self.invalid_fields = dict(invalid_fields or {})


class ConflictError(ValueError):
    """A uniqueness invariant would be violated."""


class InvalidTransitionError(ValueError):
    """A status transition is not allowed from the record's current status."""

    def __init__(self, entity: str, current: Optional[str], target: str):
        super().__init__(
            f"Transition impossible pour {entity}: {current} -> {target}"
        )
        self.entity = entity
        self.current = current
        self.target = target
