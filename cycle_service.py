"""Seven-day cycle state machine.

A cycle is ``INACTIVE`` until Day 1 is logged, then ``ACTIVE`` for the seven
calendar days starting at ``start_date``. It is complete once all five workout
days and both rest days are logged, and it expires on the eighth day: an
incomplete window is purged, and the state always returns to the canonical
inactive shape.

The module level functions are pure guarded transitions. :class:`CycleService`
owns the persisted state handle and is the only writer of it.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from db import RecordStore
from errors import (
    AlreadyLoggedToday,
    CycleComplete,
    CycleNotStarted,
    InvalidDayOrder,
    RestLimitReached,
)
from plan import (
    CYCLE_LENGTH_DAYS,
    MAX_REST_DAYS,
    WORKOUT_DAYS,
    add_days,
    check_date,
    days_between,
    iso_date,
)

_LOGGER = logging.getLogger(__name__)


class CyclePhase(str, enum.Enum):
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"


@dataclass(frozen=True)
class CycleState:
    active: bool = False
    start_date: Optional[str] = None
    completed_workout_days: frozenset = frozenset()
    rest_days_used: int = 0

    @classmethod
    def inactive(cls) -> "CycleState":
        return cls()

    @property
    def phase(self) -> CyclePhase:
        return CyclePhase.ACTIVE if self.active else CyclePhase.INACTIVE

    @property
    def completed_days(self) -> list[int]:
        return sorted(self.completed_workout_days)

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "start_date": self.start_date,
            "completed_workout_days": self.completed_days,
            "rest_days_used": self.rest_days_used,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CycleState":
        if not data.get("active"):
            return cls.inactive()
        return cls(
            active=True,
            start_date=data["start_date"],
            completed_workout_days=frozenset(
                int(d) for d in data.get("completed_workout_days", [])
            ),
            rest_days_used=int(data.get("rest_days_used", 0)),
        )


def is_complete(state: CycleState) -> bool:
    return (
        len(state.completed_workout_days) == len(WORKOUT_DAYS)
        and state.rest_days_used == MAX_REST_DAYS
    )


def next_workout_day(state: CycleState) -> Optional[int]:
    for day in WORKOUT_DAYS:
        if day not in state.completed_workout_days:
            return day
    return None


def can_log_workout(
    state: CycleState, today: str, existing_session_today: Optional[dict]
) -> bool:
    if existing_session_today:
        return False
    if is_complete(state):
        return False
    if state.active and next_workout_day(state) is None:
        return False
    return True


def can_log_rest(state: CycleState, existing_session_today: Optional[dict]) -> bool:
    return (
        state.active
        and not is_complete(state)
        and state.rest_days_used < MAX_REST_DAYS
        and not existing_session_today
    )


def apply_workout(state: CycleState, today: str, day: int) -> CycleState:
    """Return the state after logging workout ``day`` on ``today``.

    A cold start always records Day 1, whatever ``day`` was requested.
    """
    if not state.active:
        return CycleState(
            active=True,
            start_date=iso_date(today),
            completed_workout_days=frozenset({1}),
            rest_days_used=0,
        )
    expected = next_workout_day(state)
    if day in state.completed_workout_days or day != expected:
        raise InvalidDayOrder(day, expected)
    return dataclasses.replace(
        state, completed_workout_days=state.completed_workout_days | {day}
    )


def apply_rest(
    state: CycleState, today: str, existing_session_today: Optional[dict]
) -> CycleState:
    if not state.active:
        raise CycleNotStarted()
    if is_complete(state):
        raise CycleComplete()
    if state.rest_days_used >= MAX_REST_DAYS:
        raise RestLimitReached(MAX_REST_DAYS)
    if existing_session_today:
        raise AlreadyLoggedToday(iso_date(today))
    return dataclasses.replace(state, rest_days_used=state.rest_days_used + 1)


def cycle_window(state: CycleState) -> tuple[str, str]:
    """Closed date interval covered by an active cycle."""
    return state.start_date, add_days(state.start_date, CYCLE_LENGTH_DAYS - 1)


def is_expired(state: CycleState, today: str) -> bool:
    if not state.active:
        return False
    return days_between(state.start_date, iso_date(today)) > CYCLE_LENGTH_DAYS - 1


def cycle_day(state: CycleState, today: str) -> Optional[int]:
    """1-based position of ``today`` inside the active window."""
    if not state.active:
        return None
    return days_between(state.start_date, iso_date(today)) + 1


def sanitize_state(raw) -> Optional[CycleState]:
    """Turn an untrusted state mapping into a CycleState, or ``None``.

    Days are deduplicated and restricted to 1..5, rest days are clamped to
    [0, 2]. An active state without a usable start date is rejected.
    """
    if not isinstance(raw, dict):
        return None
    days_raw = raw.get("completedWorkoutDays", raw.get("completed_workout_days"))
    days: set[int] = set()
    if isinstance(days_raw, list):
        for d in days_raw:
            if isinstance(d, bool):
                continue
            try:
                num = float(d)
            except (TypeError, ValueError):
                continue
            if num.is_integer() and int(num) in WORKOUT_DAYS:
                days.add(int(num))
    rest_raw = raw.get("restDaysUsed", raw.get("rest_days_used"))
    try:
        rest = float(rest_raw)
    except (TypeError, ValueError):
        rest = 0.0
    if rest != rest or rest < 0 or rest == float("inf"):
        rest = 0.0
    rest_days = min(MAX_REST_DAYS, int(rest))
    start_raw = raw.get("startDate", raw.get("start_date"))
    start_date = None
    if isinstance(start_raw, str) and start_raw:
        try:
            start_date = check_date(start_raw)
        except ValueError:
            start_date = None
    active = bool(raw.get("active"))
    if not active:
        return CycleState.inactive()
    if start_date is None:
        return None
    return CycleState(
        active=True,
        start_date=start_date,
        completed_workout_days=frozenset(days),
        rest_days_used=rest_days,
    )


def rebuild_state(sessions: Iterable[dict], today: str) -> CycleState:
    """Reconstruct the cycle from raw sessions.

    The cycle starts at the first workout dated within the last seven days
    (``today - 6`` .. ``today``); its own seven-day window then supplies the
    completed days and the rest count.
    """
    today = iso_date(today)
    rows = [s for s in sessions if isinstance(s, dict) and s.get("date")]
    window_start = add_days(today, -(CYCLE_LENGTH_DAYS - 1))
    workouts = sorted(
        (
            s
            for s in rows
            if s.get("type") == "WORKOUT" and window_start <= s["date"] <= today
        ),
        key=lambda s: s["date"],
    )
    if not workouts:
        return CycleState.inactive()
    start_date = workouts[0]["date"]
    end_date = add_days(start_date, CYCLE_LENGTH_DAYS - 1)
    week = [s for s in rows if start_date <= s["date"] <= end_date]
    days = frozenset(
        int(s["day_number"])
        for s in week
        if s.get("type") == "WORKOUT" and int(s.get("day_number", 0)) in WORKOUT_DAYS
    )
    rest = sum(1 for s in week if s.get("type") == "REST")
    if not days:
        return CycleState.inactive()
    return CycleState(
        active=True,
        start_date=start_date,
        completed_workout_days=days,
        rest_days_used=min(MAX_REST_DAYS, rest),
    )


class CycleService:
    """Owns the persisted cycle state and applies transitions to it."""

    def __init__(self, store: RecordStore, state: Optional[CycleState] = None) -> None:
        self.store = store
        self._state = state

    @property
    def state(self) -> CycleState:
        if self._state is None:
            raise RuntimeError("cycle state not loaded; call load() first")
        return self._state

    async def load(self) -> CycleState:
        raw = await self.store.state.fetch()
        if raw is None:
            self._state = CycleState.inactive()
            await self.store.state.put(self._state.to_dict())
        else:
            self._state = CycleState.from_dict(raw)
        return self._state

    async def _save(self, state: CycleState) -> CycleState:
        await self.store.state.put(state.to_dict())
        self._state = state
        return state

    def next_workout_day(self) -> Optional[int]:
        return next_workout_day(self.state)

    def is_complete(self) -> bool:
        return is_complete(self.state)

    def can_log_workout(self, today, existing_session_today: Optional[dict]) -> bool:
        return can_log_workout(self.state, iso_date(today), existing_session_today)

    def can_log_rest(self, existing_session_today: Optional[dict]) -> bool:
        return can_log_rest(self.state, existing_session_today)

    async def check_expiry(self, today) -> CycleState:
        """Close an expired cycle. Safe to call repeatedly."""
        state = self._state if self._state is not None else await self.load()
        if not is_expired(state, today):
            return state
        if not is_complete(state):
            start, end = cycle_window(state)
            _LOGGER.info("Cycle started %s expired incomplete; purging window", start)
            await self.store.delete_sessions_in_range(start, end)
        else:
            _LOGGER.info("Cycle started %s expired complete", state.start_date)
        return await self._save(CycleState.inactive())

    async def log_workout(self, today, day: int) -> CycleState:
        new_state = apply_workout(self.state, iso_date(today), day)
        _LOGGER.info(
            "Workout day %s logged on %s (completed: %s)",
            day if self.state.active else 1,
            iso_date(today),
            new_state.completed_days,
        )
        return await self._save(new_state)

    async def log_rest(self, today, existing_session_today: Optional[dict]) -> CycleState:
        new_state = apply_rest(self.state, iso_date(today), existing_session_today)
        _LOGGER.info("Rest day logged on %s (%d used)", iso_date(today), new_state.rest_days_used)
        return await self._save(new_state)

    async def replace(self, state: CycleState) -> CycleState:
        return await self._save(state)

    async def rebuild(self, today) -> CycleState:
        """Recompute the state from stored sessions."""
        sessions = await self.store.sessions.fetch_all_rows()
        state = rebuild_state(sessions, today)
        _LOGGER.info("Cycle state rebuilt from %d session(s): %s", len(sessions), state.to_dict())
        return await self._save(state)
