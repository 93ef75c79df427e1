"""Step-by-step logging of one workout day.

The wizard walks every (exercise, set) pair of a :class:`plan.DayPlan` in
order. Each step holds one weight; autofill suggestions fill a step only while
the user has not typed a value for it. The finished draft is persisted by
:class:`session_service.SessionService`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from errors import IncompleteWorkout, ValidationError
from plan import (
    DEFAULT_ISOLATION_KEYWORDS,
    DEFAULT_REST_COMPOUND,
    DEFAULT_REST_ISOLATION,
    DayPlan,
    Exercise,
    rest_seconds,
)


@dataclass(frozen=True)
class RestPolicy:
    isolation_seconds: int = DEFAULT_REST_ISOLATION
    compound_seconds: int = DEFAULT_REST_COMPOUND
    keywords: Sequence[str] = DEFAULT_ISOLATION_KEYWORDS

    @classmethod
    def from_settings(cls, settings) -> "RestPolicy":
        return cls(
            isolation_seconds=settings.get_int("rest_seconds_isolation", DEFAULT_REST_ISOLATION),
            compound_seconds=settings.get_int("rest_seconds_compound", DEFAULT_REST_COMPOUND),
            keywords=tuple(settings.get_list("isolation_keywords")) or DEFAULT_ISOLATION_KEYWORDS,
        )

    def seconds_for(self, exercise: Exercise) -> int:
        return rest_seconds(
            exercise,
            isolation_seconds=self.isolation_seconds,
            compound_seconds=self.compound_seconds,
            keywords=self.keywords,
        )


@dataclass(frozen=True)
class WizardStep:
    position: int
    exercise_index: int
    exercise: Exercise
    set_number: int


@dataclass(frozen=True)
class SetEntry:
    exercise_name: str
    set_number: int
    weight: float


@dataclass(frozen=True)
class WorkoutDraft:
    day_number: int
    reps: int
    entries: tuple[SetEntry, ...]


def parse_weight(value) -> float:
    if isinstance(value, bool):
        raise ValidationError("weight must be a number", field="weight")
    try:
        weight = float(value)
    except (TypeError, ValueError):
        raise ValidationError("weight must be a number", field="weight") from None
    if not math.isfinite(weight) or weight <= 0:
        raise ValidationError("weight must be positive", field="weight")
    return weight


class WorkoutWizard:
    """Collects one positive weight per set for a single day."""

    def __init__(
        self,
        day: DayPlan,
        suggestions: Optional[dict[str, dict[int, float]]] = None,
        rest_policy: Optional[RestPolicy] = None,
    ) -> None:
        self.day = day
        self.suggestions = suggestions or {}
        self.rest_policy = rest_policy or RestPolicy()
        self.steps: list[WizardStep] = []
        for ex_index, exercise in enumerate(day.exercises):
            for set_number in range(1, exercise.sets + 1):
                self.steps.append(
                    WizardStep(len(self.steps), ex_index, exercise, set_number)
                )
        if not self.steps:
            raise ValueError(f"day {day.number} has no sets")
        self.position = 0
        self._weights: dict[tuple[str, int], float] = {}
        self._autofilled: set[tuple[str, int]] = set()
        self._visit()

    @staticmethod
    def _key(step: WizardStep) -> tuple[str, int]:
        return step.exercise.name, step.set_number

    def _visit(self) -> None:
        step = self.current
        key = self._key(step)
        if key in self._weights:
            return
        suggested = self.suggestions.get(step.exercise.name, {}).get(step.set_number)
        if suggested is not None and suggested > 0:
            self._weights[key] = float(suggested)
            self._autofilled.add(key)

    @property
    def current(self) -> WizardStep:
        return self.steps[self.position]

    @property
    def is_first(self) -> bool:
        return self.position == 0

    @property
    def is_last(self) -> bool:
        return self.position == len(self.steps) - 1

    @property
    def target_reps(self) -> int:
        return self.day.target_reps

    def weight_for(self, exercise_name: str, set_number: int) -> Optional[float]:
        return self._weights.get((exercise_name, set_number))

    def enter_weight(self, value) -> float:
        weight = parse_weight(value)
        key = self._key(self.current)
        self._weights[key] = weight
        self._autofilled.discard(key)
        return weight

    def advance(self) -> int:
        """Move to the next set and return the suggested rest in seconds."""
        step = self.current
        if self.weight_for(*self._key(step)) is None:
            raise ValidationError(
                f"enter a weight for {step.exercise.name} set {step.set_number}",
                field="weight",
            )
        if self.is_last:
            raise ValidationError("this is the last set; finish the workout instead")
        self.position += 1
        self._visit()
        return self.rest_policy.seconds_for(step.exercise)

    def back(self) -> WizardStep:
        if self.position > 0:
            self.position -= 1
            self._visit()
        return self.current

    def go_to(self, position: int) -> WizardStep:
        if not 0 <= position < len(self.steps):
            raise ValidationError(f"no step {position}")
        self.position = position
        self._visit()
        return self.current

    def missing_steps(self) -> list[WizardStep]:
        return [s for s in self.steps if self.weight_for(*self._key(s)) is None]

    def finish(self) -> WorkoutDraft:
        """Return the draft, or jump to the first set without a weight."""
        missing = self.missing_steps()
        if missing:
            first = missing[0]
            self.go_to(first.position)
            raise IncompleteWorkout(first.exercise.name, first.set_number, first.position)
        entries = tuple(
            SetEntry(s.exercise.name, s.set_number, self._weights[self._key(s)])
            for s in self.steps
        )
        return WorkoutDraft(self.day.number, self.target_reps, entries)

    def view(self) -> dict:
        step = self.current
        key = self._key(step)
        return {
            "day_number": self.day.number,
            "title": self.day.title,
            "day_type": self.day.day_type,
            "position": self.position,
            "total_steps": len(self.steps),
            "exercise": step.exercise.name,
            "exercise_index": step.exercise_index,
            "set_number": step.set_number,
            "sets": step.exercise.sets,
            "target_reps": self.target_reps,
            "weight": self._weights.get(key),
            "autofilled": key in self._autofilled,
            "rest_seconds": self.rest_policy.seconds_for(step.exercise),
            "is_last": self.is_last,
        }
