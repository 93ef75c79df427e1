from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from db import RecordStore
from plan import add_days, iso_date

STREAK_LOOKBACK_DAYS = 30
BODYWEIGHT_LOOKBACK_DAYS = 365


def _average(values: Iterable[Optional[float]]) -> Optional[float]:
    vals = [float(v) for v in values if v is not None]
    if not vals:
        return None
    return round(sum(vals) / len(vals), 2)


def weight_change(metrics: List[dict]) -> Optional[float]:
    """Last bodyweight minus the first one, both in date order."""
    weights = [
        m["bodyweight_lb"]
        for m in sorted(metrics, key=lambda m: m["date"])
        if m.get("bodyweight_lb") is not None
    ]
    if not weights:
        return None
    return round(weights[-1] - weights[0], 2)


def tracked_streak(dates: Iterable[str]) -> int:
    """Consecutive tracked days ending at the latest tracked date."""
    tracked = set(dates)
    if not tracked:
        return 0
    latest = max(tracked)
    count = 0
    while add_days(latest, -count) in tracked:
        count += 1
    return count


class StatisticsService:
    """Compute the training and body metric summary."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def _sessions_since(self, today: str, days: int) -> List[dict]:
        return await self.store.sessions.fetch_range(add_days(today, -(days - 1)), today)

    async def _metrics_since(self, today: str, days: int) -> List[dict]:
        return await self.store.metrics.fetch_range(add_days(today, -(days - 1)), today)

    async def streak(self, today) -> int:
        sessions = await self._sessions_since(iso_date(today), STREAK_LOOKBACK_DAYS)
        return tracked_streak(
            s["date"] for s in sessions if s["type"] in ("WORKOUT", "REST")
        )

    async def latest_bodyweight(self, today) -> Optional[dict]:
        """Most recent bodyweight within the last year, with its date."""
        today = iso_date(today)
        metrics = await self.store.metrics.fetch_range(
            add_days(today, -BODYWEIGHT_LOOKBACK_DAYS), today
        )
        for metric in sorted(metrics, key=lambda m: m["date"], reverse=True):
            if metric.get("bodyweight_lb") is not None:
                return {"date": metric["date"], "bodyweight_lb": metric["bodyweight_lb"]}
        return None

    async def summary(self, today) -> Dict[str, object]:
        """Return workout counts, calorie averages and bodyweight trend for ``today``."""
        today = iso_date(today)
        sessions30 = await self._sessions_since(today, 30)
        start7 = add_days(today, -6)
        metrics14 = await self._metrics_since(today, 14)
        metrics7 = [m for m in metrics14 if m["date"] >= start7]
        latest = await self.latest_bodyweight(today)
        return {
            "today": today,
            "streak": await self.streak(today),
            "workouts_7d": sum(
                1 for s in sessions30 if s["type"] == "WORKOUT" and s["date"] >= start7
            ),
            "workouts_30d": sum(1 for s in sessions30 if s["type"] == "WORKOUT"),
            "avg_calories_7d": _average(m.get("calories") for m in metrics7),
            "avg_calories_14d": _average(m.get("calories") for m in metrics14),
            "weight_change_14d": weight_change(metrics14),
            "latest_bodyweight_lb": latest["bodyweight_lb"] if latest else None,
            "latest_bodyweight_date": latest["date"] if latest else None,
        }
