"""Error taxonomy shared by the services, the REST API and the CLI.

Validation, sequence and referential errors derive from ``ValueError`` so
callers that only know about ``ValueError`` keep working.
"""

from __future__ import annotations


class FitPlanError(Exception):
    """Base class for every error raised by the application."""


class ValidationError(FitPlanError, ValueError):
    """Malformed or out-of-domain input. The whole unit of work is rejected."""

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        index: int | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.index = index
        self.field = field


class MalformedInput(ValidationError):
    """Input is not structured data or lacks mandatory envelope fields."""


class UnsupportedSchemaVersion(ValidationError):
    """Backup snapshot declares a schema version this build cannot read."""

    def __init__(self, version) -> None:
        super().__init__(f"unsupported backup schema version: {version!r}")
        self.version = version


class IncompleteWorkout(ValidationError):
    """A workout draft is missing a weight for at least one set."""

    def __init__(self, exercise_name: str, set_number: int, position: int) -> None:
        super().__init__(
            f"enter a weight for {exercise_name} set {set_number} before finishing"
        )
        self.exercise_name = exercise_name
        self.set_number = set_number
        self.position = position


class SequenceError(FitPlanError, ValueError):
    """Illegal cycle transition. Persisted state is left untouched."""


class InvalidDayOrder(SequenceError):
    def __init__(self, day: int, expected: int | None) -> None:
        if expected is None:
            msg = f"day {day} cannot be logged: all workout days are complete"
        else:
            msg = f"day {day} is out of order, expected day {expected}"
        super().__init__(msg)
        self.day = day
        self.expected = expected


class CycleNotStarted(SequenceError):
    def __init__(self) -> None:
        super().__init__("cycle not started: log Day 1 before a rest day")


class CycleComplete(SequenceError):
    def __init__(self) -> None:
        super().__init__("cycle complete: no more logs can be added")


class RestLimitReached(SequenceError):
    def __init__(self, limit: int = 2) -> None:
        super().__init__(f"rest limit reached ({limit}/{limit})")
        self.limit = limit


class AlreadyLoggedToday(SequenceError):
    def __init__(self, date: str) -> None:
        super().__init__(f"{date} is already logged")
        self.date = date


class ReferentialError(FitPlanError, ValueError):
    """A row references a record that does not exist in the same import."""

    def __init__(self, message: str, *, missing_id: str | None = None) -> None:
        super().__init__(message)
        self.missing_id = missing_id


class StorageError(FitPlanError, RuntimeError):
    """Underlying read/write failure. Retry or re-derive, never assume rollback."""
