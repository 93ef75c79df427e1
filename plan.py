"""The fixed five-day training plan.

Days 1-3 are heavy (low reps), days 4-5 are light (high reps). Reps are not
entered by the user; each logged set records the target reps of its day.
"""

from __future__ import annotations

import datetime
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

WORKOUT_DAYS = (1, 2, 3, 4, 5)
CYCLE_LENGTH_DAYS = 7
MAX_REST_DAYS = 2

HEAVY = "HEAVY"
LIGHT = "LIGHT"
HEAVY_REPS = 6
LIGHT_REPS = 12

_ISO_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")

DAY_TYPES = {1: HEAVY, 2: HEAVY, 3: HEAVY, 4: LIGHT, 5: LIGHT}

DEFAULT_ISOLATION_KEYWORDS = (
    "raise",
    "fly",
    "curl",
    "pushdown",
    "extension",
    "face pull",
    "shrug",
    "calf",
    "plank",
    "crunch",
    "rotation",
)
DEFAULT_REST_ISOLATION = 60
DEFAULT_REST_COMPOUND = 120


@dataclass(frozen=True)
class Exercise:
    """One exercise of a day plan.

    ``isolation`` and ``rest_seconds`` override the keyword-based rest rule.
    """

    name: str
    sets: int
    isolation: Optional[bool] = None
    rest_seconds: Optional[int] = None


@dataclass(frozen=True)
class DayPlan:
    number: int
    title: str
    hint: str
    exercises: tuple[Exercise, ...] = field(default_factory=tuple)

    @property
    def day_type(self) -> str:
        return day_type(self.number)

    @property
    def target_reps(self) -> int:
        return target_reps(self.number)

    @property
    def total_sets(self) -> int:
        return sum(ex.sets for ex in self.exercises)


_HEAVY_HINT = "Heavy day. Target is fixed. Log weights only."
_LIGHT_HINT = "Light day. Target is fixed. Log weights only."

PLAN: dict[int, DayPlan] = {
    1: DayPlan(
        1,
        "Day 1 - Heavy Chest + Triceps (+ Side Delts)",
        _HEAVY_HINT,
        (
            Exercise("Barbell Bench Press", 4),
            Exercise("Incline DB Press", 3),
            Exercise("Weighted Dips (or Machine Dips)", 3),
            Exercise("Cable Fly (mid or low-to-high)", 2),
            Exercise("Close-Grip Bench OR Skull Crushers", 3),
            Exercise("Rope Pushdown", 2),
            Exercise("Lateral Raises", 3),
        ),
    ),
    2: DayPlan(
        2,
        "Day 2 - Heavy Back + Biceps (+ Rear Delts / Traps / Forearms)",
        _HEAVY_HINT,
        (
            Exercise("Weighted Pull-Ups OR Heavy Lat Pulldown", 4),
            Exercise("Barbell Row OR Chest-Supported Row", 3),
            Exercise("One-Arm DB Row", 3),
            Exercise("Seated Cable Row", 2),
            Exercise("Face Pulls", 3),
            Exercise("Barbell Curl", 3),
            Exercise("Hammer Curl", 2),
            Exercise("Shrugs", 2),
        ),
    ),
    3: DayPlan(
        3,
        "Day 3 - Legs + Shoulders (+ Calves / Abs / Rotator Cuff)",
        _HEAVY_HINT,
        (
            Exercise("Back Squat OR Leg Press", 4),
            Exercise("Romanian Deadlift", 3),
            Exercise("Leg Curl", 3),
            Exercise("Walking Lunges", 2),
            Exercise("Calf Raises", 4),
            Exercise("Overhead Press", 3),
            Exercise("Lateral Raises", 3),
            Exercise("Rear Delt Fly", 3),
            Exercise("Hanging Knee Raises OR Cable Crunch", 3),
            Exercise("Cable External Rotations", 2),
        ),
    ),
    4: DayPlan(
        4,
        "Day 4 - Light Chest + Triceps",
        _LIGHT_HINT,
        (
            Exercise("Incline Bench (DB or Bar)", 3),
            Exercise("Machine Chest Press", 3),
            Exercise("Push-Ups (weighted if needed)", 2),
            Exercise("Cable Fly", 3),
            Exercise("Overhead Triceps Extension", 3),
            Exercise("Rope Pushdown", 3),
            Exercise("Lateral Raises", 3),
        ),
    ),
    5: DayPlan(
        5,
        "Day 5 - Light Back + Biceps (+ Rear Delts / Forearms / Abs)",
        _LIGHT_HINT,
        (
            Exercise("Lat Pulldown", 3),
            Exercise("Chest-Supported Row", 3),
            Exercise("Cable Row (wide or close)", 2),
            Exercise("Straight-Arm Pulldown", 2, isolation=True),
            Exercise("Face Pulls", 3),
            Exercise("Incline DB Curls", 3),
            Exercise("Cable Curl OR Preacher Curl", 2),
            Exercise("Wrist Curls OR Farmer Holds", 2),
            Exercise("Plank", 3, rest_seconds=45),
        ),
    ),
}


def day_type(day_number: int) -> str:
    return DAY_TYPES.get(day_number, LIGHT)


def target_reps(day_number: int) -> int:
    return HEAVY_REPS if day_type(day_number) == HEAVY else LIGHT_REPS


def get_day(day_number: int) -> DayPlan:
    try:
        return PLAN[day_number]
    except KeyError:
        raise ValueError(f"no plan for day {day_number}") from None


def is_isolation(
    exercise: Exercise, keywords: Iterable[str] = DEFAULT_ISOLATION_KEYWORDS
) -> bool:
    if exercise.isolation is not None:
        return exercise.isolation
    name = exercise.name.lower()
    return any(k.lower() in name for k in keywords if k)


def rest_seconds(
    exercise: Exercise,
    *,
    isolation_seconds: int = DEFAULT_REST_ISOLATION,
    compound_seconds: int = DEFAULT_REST_COMPOUND,
    keywords: Iterable[str] = DEFAULT_ISOLATION_KEYWORDS,
) -> int:
    """Suggested rest after a set of ``exercise``."""
    if exercise.rest_seconds is not None:
        return exercise.rest_seconds
    if is_isolation(exercise, keywords):
        return isolation_seconds
    return compound_seconds


def check_date(value: str) -> str:
    """Return ``value`` if it is a real calendar date written as ``YYYY-MM-DD``."""
    if not isinstance(value, str) or not _ISO_DATE.fullmatch(value):
        raise ValueError(f"date must be YYYY-MM-DD, got {value!r}")
    datetime.date.fromisoformat(value)
    return value


def iso_date(value: datetime.date | str | None = None) -> str:
    """Normalize a date (default: today, local time) to ``YYYY-MM-DD``."""
    if value is None:
        return datetime.date.today().isoformat()
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    return check_date(value)


def add_days(date: str, days: int) -> str:
    return (datetime.date.fromisoformat(date) + datetime.timedelta(days=days)).isoformat()


def days_between(start: str, end: str) -> int:
    """Whole days from ``start`` to ``end``."""
    return (datetime.date.fromisoformat(end) - datetime.date.fromisoformat(start)).days
