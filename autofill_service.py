from __future__ import annotations

import logging

from db import AsyncSetLogRepository
from plan import DayPlan, iso_date

_LOGGER = logging.getLogger(__name__)


class AutofillService:
    """Looks up the last weight used for each set of an exercise."""

    def __init__(self, set_repo: AsyncSetLogRepository) -> None:
        self.sets = set_repo

    async def latest_weights(
        self, day_number: int, exercise_name: str, cutoff_exclusive
    ) -> dict[int, float]:
        """Return ``{set_number: weight}`` from logs dated before the cutoff.

        Only positive weights qualify. For each set number the most recent
        date wins and ties on a date go to the later insertion.
        """
        rows = await self.sets.fetch_history(
            day_number,
            exercise_name,
            before=iso_date(cutoff_exclusive),
            positive_only=True,
        )
        latest: dict[int, float] = {}
        for row in rows:
            latest[row["set_number"]] = row["weight"]
        return latest

    async def suggestions_for_day(
        self, day: DayPlan, cutoff_exclusive
    ) -> dict[str, dict[int, float]]:
        result: dict[str, dict[int, float]] = {}
        for exercise in day.exercises:
            weights = await self.latest_weights(day.number, exercise.name, cutoff_exclusive)
            result[exercise.name] = {
                n: w for n, w in weights.items() if 1 <= n <= exercise.sets
            }
        _LOGGER.debug(
            "Autofill for day %s found history for %d exercise(s)",
            day.number,
            sum(1 for v in result.values() if v),
        )
        return result
