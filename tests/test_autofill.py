import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from autofill_service import AutofillService
from db import RecordStore
from plan import PLAN


def log(lid, date, set_number, weight, *, day=1, exercise="Barbell Bench Press", created_at=1):
    return {
        "id": lid,
        "session_id": f"session_{date}",
        "date": date,
        "type": "WORKOUT",
        "day_number": day,
        "exercise_name": exercise,
        "set_number": set_number,
        "reps": 6,
        "weight": weight,
        "created_at": created_at,
    }


@pytest.fixture
def store(tmp_path):
    return RecordStore(str(tmp_path / "autofill.db"))


@pytest.mark.asyncio
async def test_most_recent_date_wins(store):
    await store.set_logs.add(log("b", "2026-01-05", 1, 140.0))
    await store.set_logs.add(log("a", "2026-01-01", 1, 135.0))
    service = AutofillService(store.set_logs)
    assert await service.latest_weights(1, "Barbell Bench Press", "2026-01-10") == {1: 140.0}


@pytest.mark.asyncio
async def test_cutoff_is_exclusive(store):
    await store.set_logs.add(log("a", "2026-01-01", 1, 135.0))
    await store.set_logs.add(log("b", "2026-01-05", 1, 140.0))
    await store.set_logs.add(log("c", "2026-01-08", 1, 150.0))
    service = AutofillService(store.set_logs)
    assert await service.latest_weights(1, "Barbell Bench Press", "2026-01-05") == {1: 135.0}
    assert await service.latest_weights(1, "Barbell Bench Press", "2026-01-01") == {}


@pytest.mark.asyncio
async def test_ties_on_date_go_to_later_insert(store):
    await store.set_logs.add(log("a", "2026-01-01", 2, 100.0, created_at=5))
    await store.set_logs.add(log("b", "2026-01-01", 2, 105.0, created_at=5))
    service = AutofillService(store.set_logs)
    assert await service.latest_weights(1, "Barbell Bench Press", "2026-02-01") == {2: 105.0}


@pytest.mark.asyncio
async def test_zero_weights_and_other_days_are_ignored(store):
    await store.set_logs.add(log("a", "2026-01-01", 1, 95.0))
    await store.set_logs.add(log("b", "2026-01-02", 1, 0.0))
    await store.set_logs.add(log("c", "2026-01-03", 1, 200.0, day=4))
    await store.set_logs.add(log("d", "2026-01-03", 3, 200.0, exercise="Incline DB Press"))
    service = AutofillService(store.set_logs)
    assert await service.latest_weights(1, "Barbell Bench Press", "2026-02-01") == {1: 95.0}


@pytest.mark.asyncio
async def test_suggestions_cover_every_exercise_of_day(store):
    await store.set_logs.add(log("a", "2026-01-01", 1, 135.0))
    await store.set_logs.add(log("b", "2026-01-01", 9, 135.0))
    service = AutofillService(store.set_logs)
    result = await service.suggestions_for_day(PLAN[1], "2026-01-02")
    assert set(result) == {ex.name for ex in PLAN[1].exercises}
    assert result["Barbell Bench Press"] == {1: 135.0}
    assert result["Lateral Raises"] == {}
