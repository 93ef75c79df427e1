import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import RecordStore
from stats_service import StatisticsService, tracked_streak, weight_change


def session(sid, date, kind="WORKOUT", day=1):
    return {
        "id": sid,
        "date": date,
        "type": kind,
        "day_number": day if kind == "WORKOUT" else 0,
        "created_at": 1,
        "updated_at": 1,
    }


def metric(date, bodyweight=None, calories=None):
    return {"date": date, "bodyweight_lb": bodyweight, "calories": calories, "updated_at": 1}


@pytest.fixture
def store(tmp_path):
    return RecordStore(str(tmp_path / "stats.db"))


def test_tracked_streak_anchors_on_latest_date():
    assert tracked_streak([]) == 0
    assert tracked_streak(["2024-01-01", "2024-01-02", "2024-01-04"]) == 1
    assert tracked_streak(["2024-01-02", "2024-01-03", "2024-01-04"]) == 3


def test_weight_change_uses_first_and_last_bodyweight():
    metrics = [
        metric("2024-01-05", 178.0),
        metric("2024-01-01", calories=2000),
        metric("2024-01-02", 181.5),
    ]
    assert weight_change(metrics) == -3.5
    assert weight_change([metric("2024-01-01", calories=2000)]) is None


@pytest.mark.asyncio
async def test_summary(store):
    await store.sessions.bulk_upsert(
        [
            session("a", "2023-12-20"),
            session("b", "2024-01-10", day=1),
            session("c", "2024-01-11", kind="REST"),
            session("d", "2024-01-12", day=2),
        ]
    )
    await store.metrics.bulk_upsert(
        [
            metric("2024-01-01", 182.0, 2600),
            metric("2024-01-10", calories=2400),
            metric("2024-01-12", 180.0, 2200),
        ]
    )
    summary = await StatisticsService(store).summary("2024-01-12")
    assert summary == {
        "today": "2024-01-12",
        "streak": 3,
        "workouts_7d": 2,
        "workouts_30d": 3,
        "avg_calories_7d": 2300.0,
        "avg_calories_14d": 2400.0,
        "weight_change_14d": -2.0,
        "latest_bodyweight_lb": 180.0,
        "latest_bodyweight_date": "2024-01-12",
    }


@pytest.mark.asyncio
async def test_summary_without_records(store):
    summary = await StatisticsService(store).summary("2024-01-12")
    assert summary["streak"] == 0
    assert summary["workouts_30d"] == 0
    assert summary["avg_calories_7d"] is None
    assert summary["weight_change_14d"] is None
    assert summary["latest_bodyweight_lb"] is None


@pytest.mark.asyncio
async def test_latest_bodyweight_looks_back_a_year(store):
    await store.metrics.upsert(metric("2023-03-01", 190.0))
    stats = StatisticsService(store)
    assert await stats.latest_bodyweight("2024-01-12") == {
        "date": "2023-03-01",
        "bodyweight_lb": 190.0,
    }
    assert await stats.latest_bodyweight("2024-06-01") is None
