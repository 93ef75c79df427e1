from __future__ import annotations

import logging
import math
from typing import Optional

from autofill_service import AutofillService
from cycle_service import (
    CycleService,
    CycleState,
    apply_rest,
    cycle_day,
    cycle_window,
    is_complete,
    next_workout_day,
)
from db import RecordStore, new_id, now_ms
from errors import (
    AlreadyLoggedToday,
    CycleComplete,
    InvalidDayOrder,
    ValidationError,
)
from plan import MAX_REST_DAYS, PLAN, get_day, iso_date
from stats_service import StatisticsService
from workout_wizard import RestPolicy, WorkoutDraft, WorkoutWizard

_LOGGER = logging.getLogger(__name__)


class SessionService:
    """Logs workouts, rest days and metrics against the current cycle.

    Every public coroutine that reads the cycle runs the expiry check first so
    an expired cycle is never acted upon.
    """

    def __init__(
        self,
        store: RecordStore,
        cycle: Optional[CycleService] = None,
        autofill: Optional[AutofillService] = None,
        rest_policy: Optional[RestPolicy] = None,
    ) -> None:
        self.store = store
        self.cycle = cycle or CycleService(store)
        self.autofill = autofill or AutofillService(store.set_logs)
        self.rest_policy = rest_policy or RestPolicy()
        self.statistics = StatisticsService(store)

    async def prepare(self, today) -> CycleState:
        await self.cycle.load()
        return await self.cycle.check_expiry(today)

    async def today_session(self, today) -> Optional[dict]:
        return await self.store.sessions.fetch_by_date(iso_date(today))

    def _expected_day(self, state: CycleState) -> Optional[int]:
        return next_workout_day(state) if state.active else 1

    async def start_workout(self, today) -> WorkoutWizard:
        """Open the logging wizard for the workout due today."""
        today = iso_date(today)
        state = await self.prepare(today)
        existing = await self.today_session(today)
        if existing:
            raise AlreadyLoggedToday(today)
        if is_complete(state):
            raise CycleComplete()
        day_number = self._expected_day(state)
        if day_number is None:
            raise InvalidDayOrder(0, None)
        day = get_day(day_number)
        suggestions = await self.autofill.suggestions_for_day(day, today)
        return WorkoutWizard(day, suggestions, self.rest_policy)

    def _check_draft(self, draft: WorkoutDraft) -> None:
        day = get_day(draft.day_number)
        expected = {(ex.name, n) for ex in day.exercises for n in range(1, ex.sets + 1)}
        seen: set[tuple[str, int]] = set()
        for entry in draft.entries:
            key = (entry.exercise_name, entry.set_number)
            if key not in expected:
                raise ValidationError(
                    f"{entry.exercise_name} set {entry.set_number} is not part of day {draft.day_number}"
                )
            if key in seen:
                raise ValidationError(
                    f"{entry.exercise_name} set {entry.set_number} appears twice"
                )
            if not (math.isfinite(entry.weight) and entry.weight > 0):
                raise ValidationError(
                    f"weight for {entry.exercise_name} set {entry.set_number} must be positive"
                )
            seen.add(key)
        missing = sorted(expected - seen)
        if missing:
            name, number = missing[0]
            raise ValidationError(f"missing weight for {name} set {number}")

    async def save_workout(self, today, draft: WorkoutDraft) -> dict:
        """Persist a finished draft and advance the cycle.

        The session is written first, then its set logs are replaced, then the
        cycle is updated. If a previous attempt stopped part way, the session
        already written for today is reused and the save completes.
        """
        today = iso_date(today)
        state = await self.prepare(today)
        existing = await self.today_session(today)
        resuming = (
            existing is not None
            and existing["type"] == "WORKOUT"
            and existing["day_number"] == draft.day_number
            and draft.day_number not in state.completed_workout_days
        )
        if existing is not None and not resuming:
            raise AlreadyLoggedToday(today)
        if is_complete(state):
            raise CycleComplete()
        expected = self._expected_day(state)
        if draft.day_number != expected:
            raise InvalidDayOrder(draft.day_number, expected)
        self._check_draft(draft)

        stamp = now_ms()
        if resuming:
            _LOGGER.info("Resuming interrupted save of day %s on %s", draft.day_number, today)
            session = dict(existing, updated_at=stamp)
        else:
            session = {
                "id": new_id("session"),
                "date": today,
                "type": "WORKOUT",
                "day_number": draft.day_number,
                "created_at": stamp,
                "updated_at": stamp,
            }
        await self.store.sessions.upsert(session)
        logs = [
            {
                "id": new_id("set"),
                "session_id": session["id"],
                "date": today,
                "type": "WORKOUT",
                "day_number": draft.day_number,
                "exercise_name": entry.exercise_name,
                "set_number": entry.set_number,
                "reps": draft.reps,
                "weight": entry.weight,
                "created_at": stamp,
            }
            for entry in draft.entries
        ]
        await self.store.replace_set_logs(session["id"], logs)
        state = await self.cycle.log_workout(today, draft.day_number)
        return {"session": session, "set_logs": len(logs), "cycle": state.to_dict()}

    async def _rest_pending(self, state: CycleState, today: str, existing: Optional[dict]) -> bool:
        """True when today's REST session is stored but not yet counted."""
        if existing is None or existing["type"] != "REST" or not state.active:
            return False
        start, _ = cycle_window(state)
        sessions = await self.store.sessions.fetch_range(start, today)
        rests = sum(1 for s in sessions if s["type"] == "REST")
        return rests > state.rest_days_used

    async def log_rest(self, today) -> dict:
        """Record a rest day. Retrying after a partial save completes it."""
        today = iso_date(today)
        state = await self.prepare(today)
        existing = await self.today_session(today)
        resuming = await self._rest_pending(state, today, existing)
        apply_rest(state, today, None if resuming else existing)
        stamp = now_ms()
        if resuming:
            _LOGGER.info("Resuming interrupted rest log on %s", today)
            session = dict(existing, updated_at=stamp)
        else:
            session = {
                "id": new_id("session"),
                "date": today,
                "type": "REST",
                "day_number": 0,
                "created_at": stamp,
                "updated_at": stamp,
            }
        await self.store.sessions.upsert(session)
        state = await self.cycle.log_rest(today, None)
        return {"session": session, "cycle": state.to_dict()}

    async def save_metric(
        self,
        date,
        *,
        bodyweight_lb: Optional[float] = None,
        calories: Optional[float] = None,
    ) -> dict:
        """Merge a bodyweight and/or calorie value into the metric of ``date``."""
        date = iso_date(date)
        if bodyweight_lb is None and calories is None:
            raise ValidationError("nothing to save")
        for name, value in (("bodyweight", bodyweight_lb), ("calories", calories)):
            if value is not None and not (math.isfinite(value) and value > 0):
                raise ValidationError(f"enter a valid {name}", field=name)
        metric = await self.store.metrics.fetch_by_date(date) or {
            "date": date,
            "bodyweight_lb": None,
            "calories": None,
        }
        if bodyweight_lb is not None:
            metric["bodyweight_lb"] = float(bodyweight_lb)
        if calories is not None:
            metric["calories"] = float(calories)
        metric["updated_at"] = now_ms()
        await self.store.metrics.upsert(metric)
        return metric

    async def list_metrics(self, start_date, end_date) -> list[dict]:
        return await self.store.metrics.fetch_range(iso_date(start_date), iso_date(end_date))

    async def recent_sessions(self, limit: int = 30) -> list[dict]:
        return await self.store.sessions.fetch_recent(limit)

    async def streak(self, today) -> int:
        return await self.statistics.streak(today)

    async def stats(self, today) -> dict:
        today = iso_date(today)
        await self.prepare(today)
        return await self.statistics.summary(today)

    async def status(self, today) -> dict:
        today = iso_date(today)
        state = await self.prepare(today)
        existing = await self.today_session(today)
        next_day = self._expected_day(state)
        return {
            "today": today,
            "phase": state.phase.value,
            "active": state.active,
            "start_date": state.start_date,
            "cycle_day": cycle_day(state, today),
            "completed_workout_days": state.completed_days,
            "rest_days_used": state.rest_days_used,
            "rest_days_left": max(0, MAX_REST_DAYS - state.rest_days_used),
            "complete": is_complete(state),
            "next_workout_day": next_day,
            "next_workout_title": PLAN[next_day].title if next_day else None,
            "logged_today": existing is not None,
            "today_session": existing,
            "can_log_workout": self.cycle.can_log_workout(today, existing),
            "can_log_rest": self.cycle.can_log_rest(existing),
            "streak": await self.streak(today),
        }

    async def rebuild_cycle(self, today) -> CycleState:
        await self.cycle.load()
        return await self.cycle.rebuild(today)
