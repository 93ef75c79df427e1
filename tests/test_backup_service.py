import copy
import json
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from backup_service import BackupService, to_csv, validate_rows
from db import RecordStore
from errors import (
    MalformedInput,
    ReferentialError,
    UnsupportedSchemaVersion,
    ValidationError,
)
from session_service import SessionService
from plan import PLAN
from workout_wizard import SetEntry, WorkoutDraft


@pytest.fixture
def store(tmp_path):
    return RecordStore(str(tmp_path / "backup.db"))


async def populate(store: RecordStore) -> SessionService:
    service = SessionService(store)
    await service.save_workout("2024-01-01", draft_for(1, 135.0))
    await service.save_workout("2024-01-02", draft_for(2, 95.0))
    await service.log_rest("2024-01-03")
    await service.save_metric("2024-01-01", bodyweight_lb=181.2, calories=2600)
    return service


async def snapshot_rows(store: RecordStore):
    return (
        await store.sessions.fetch_all_rows(),
        await store.set_logs.fetch_all_rows(),
        await store.metrics.fetch_all_rows(),
        await store.state.fetch(),
    )


def draft_for(day_number: int, weight: float) -> WorkoutDraft:
    day = PLAN[day_number]
    entries = tuple(
        SetEntry(ex.name, n, weight) for ex in day.exercises for n in range(1, ex.sets + 1)
    )
    return WorkoutDraft(day_number, day.target_reps, entries)


def minimal_snapshot():
    return {
        "schemaVersion": 1,
        "exportedAt": "2024-01-05T00:00:00+00:00",
        "sessions": [
            {
                "id": "session_a",
                "date": "2024-01-04",
                "type": "WORKOUT",
                "dayNumber": 1,
                "createdAt": 10,
                "updatedAt": 10,
            },
            {
                "id": "session_b",
                "date": "2024-01-05",
                "type": "REST",
                "dayNumber": 0,
                "createdAt": 11,
                "updatedAt": 11,
            },
        ],
        "setLogs": [
            {
                "id": "set_a",
                "sessionId": "session_a",
                "date": "2024-01-04",
                "type": "WORKOUT",
                "dayNumber": 1,
                "exerciseName": "Barbell Bench Press",
                "setNumber": 1,
                "reps": 6,
                "weight": 135,
                "createdAt": 10,
            }
        ],
        "metrics": [
            {"date": "2024-01-04", "bodyweightLb": 180, "calories": None, "updatedAt": 10}
        ],
        "cycleState": None,
    }


@pytest.mark.asyncio
async def test_round_trip_reproduces_store(store, tmp_path):
    await populate(store)
    before = await snapshot_rows(store)
    exported = await BackupService(store).export_snapshot()
    assert exported["schemaVersion"] == 1
    assert exported["cycleState"]["completedWorkoutDays"] == [1, 2]

    other = RecordStore(str(tmp_path / "restored.db"))
    summary = await BackupService(other).import_snapshot(json.dumps(exported), "2024-01-03")
    assert summary["state_source"] == "snapshot"
    assert await snapshot_rows(other) == before

    summary = await BackupService(store).import_snapshot(exported, "2024-01-03")
    assert summary["sessions"] == 3
    assert await snapshot_rows(store) == before


@pytest.mark.asyncio
async def test_orphan_set_log_leaves_store_untouched(store):
    await populate(store)
    before = await snapshot_rows(store)
    snapshot = minimal_snapshot()
    snapshot["setLogs"][0]["sessionId"] = "session_missing"
    with pytest.raises(ReferentialError) as exc:
        await BackupService(store).import_snapshot(snapshot, "2024-01-05")
    assert exc.value.missing_id == "session_missing"
    assert await snapshot_rows(store) == before


@pytest.mark.asyncio
async def test_invalid_row_leaves_store_untouched(store):
    await populate(store)
    before = await snapshot_rows(store)
    snapshot = minimal_snapshot()
    snapshot["setLogs"][0]["setNumber"] = 0
    with pytest.raises(ValidationError) as exc:
        await BackupService(store).import_snapshot(snapshot, "2024-01-05")
    assert exc.value.kind == "setLogs"
    assert exc.value.index == 0
    assert exc.value.field == "setNumber"
    assert await snapshot_rows(store) == before

    for kind, key, value in (
        ("metrics", "bodyweightLb", -180),
        ("metrics", "calories", 0),
        ("sessions", "dayNumber", True),
        ("setLogs", "reps", False),
        ("sessions", "date", "20240104"),
    ):
        snapshot = minimal_snapshot()
        snapshot[kind][0][key] = value
        with pytest.raises(ValidationError) as exc:
            await BackupService(store).import_snapshot(snapshot, "2024-01-05")
        assert (exc.value.kind, exc.value.index, exc.value.field) == (kind, 0, key)
    assert await snapshot_rows(store) == before


@pytest.mark.asyncio
async def test_envelope_errors(store):
    backup = BackupService(store)
    with pytest.raises(MalformedInput):
        await backup.import_snapshot("{not json", "2024-01-05")
    with pytest.raises(MalformedInput):
        await backup.import_snapshot("[]", "2024-01-05")
    with pytest.raises(MalformedInput):
        await backup.import_snapshot({"sessions": []}, "2024-01-05")
    snapshot = minimal_snapshot()
    snapshot["schemaVersion"] = 2
    with pytest.raises(UnsupportedSchemaVersion):
        await backup.import_snapshot(snapshot, "2024-01-05")


@pytest.mark.asyncio
async def test_duplicate_session_dates_rejected(store):
    snapshot = minimal_snapshot()
    snapshot["sessions"][1]["date"] = "2024-01-04"
    with pytest.raises(ValidationError) as exc:
        await BackupService(store).import_snapshot(snapshot, "2024-01-05")
    assert exc.value.field == "date"


@pytest.mark.asyncio
async def test_missing_state_is_rebuilt(store):
    summary = await BackupService(store).import_snapshot(minimal_snapshot(), "2024-01-06")
    assert summary["state_source"] == "rebuilt"
    assert summary["cycle_state"] == {
        "active": True,
        "start_date": "2024-01-04",
        "completed_workout_days": [1],
        "rest_days_used": 1,
    }
    assert await store.state.fetch() == summary["cycle_state"]


@pytest.mark.asyncio
async def test_legacy_week_state_is_sanitized(store):
    snapshot = minimal_snapshot()
    snapshot.pop("cycleState")
    snapshot["weekState"] = {
        "id": "current",
        "active": True,
        "startDate": "2024-01-04",
        "completedWorkoutDays": [1, 1, 7],
        "restDaysUsed": 4,
    }
    summary = await BackupService(store).import_snapshot(snapshot, "2024-01-06")
    assert summary["state_source"] == "snapshot"
    assert summary["cycle_state"]["completed_workout_days"] == [1]
    assert summary["cycle_state"]["rest_days_used"] == 2


@pytest.mark.asyncio
async def test_active_state_without_start_falls_back_to_rebuild(store):
    snapshot = minimal_snapshot()
    snapshot["cycleState"] = {"active": True, "completedWorkoutDays": [1, 2]}
    summary = await BackupService(store).import_snapshot(snapshot, "2024-01-20")
    assert summary["state_source"] == "rebuilt"
    assert summary["cycle_state"]["active"] is False


def test_validate_rows_normalizes_numbers():
    rows = validate_rows(
        "sessions",
        [
            {
                "id": "s",
                "date": "2024-01-01",
                "type": "WORKOUT",
                "dayNumber": "3",
                "createdAt": 5.0,
                "updatedAt": 6,
                "extra": "ignored",
            }
        ],
    )
    assert rows == [
        {
            "id": "s",
            "date": "2024-01-01",
            "type": "WORKOUT",
            "day_number": 3,
            "created_at": 5,
            "updated_at": 6,
        }
    ]
    for bad in [
        {"date": "2024-1-01"},
        {"date": "2024-02-30"},
        {"type": "SWIM"},
        {"dayNumber": 6},
        {"createdAt": float("inf")},
    ]:
        row = copy.deepcopy(minimal_snapshot()["sessions"][0])
        row.update(bad)
        with pytest.raises(ValidationError):
            validate_rows("sessions", [row])
    with pytest.raises(ValidationError):
        validate_rows("metrics", {"date": "2024-01-01"})


def test_csv_quoting_and_line_endings():
    text = to_csv(
        [{"a": 'say "hi"', "b": "x,y"}, {"a": 1.0, "b": None}],
        ["a", "b"],
    )
    assert text == 'a,b\r\n"say ""hi""","x,y"\r\n1,\r\n'


@pytest.mark.asyncio
async def test_export_csv_columns(store):
    await populate(store)
    backup = BackupService(store)
    sessions = (await backup.export_csv("sessions")).split("\r\n")
    assert sessions[0] == "id,date,type,dayNumber,createdAt,updatedAt"
    assert len([line for line in sessions[1:] if line]) == 3
    set_logs = await backup.export_csv("setLogs")
    assert set_logs.startswith(
        "id,sessionId,date,type,dayNumber,exerciseName,setNumber,reps,weight,createdAt\r\n"
    )
    metrics = (await backup.export_csv("metrics")).split("\r\n")
    assert metrics[1].startswith("2024-01-01,181.2,2600,")
    with pytest.raises(ValidationError):
        await backup.export_csv("workouts")


@pytest.mark.asyncio
async def test_template_import(store):
    await store.sessions.upsert(
        {
            "id": "session_existing",
            "date": "2024-02-01",
            "type": "REST",
            "day_number": 0,
            "created_at": 1,
            "updated_at": 1,
        }
    )
    text = (
        "date,type,dayNumber,bodyweightLb\r\n"
        "2024-02-01,WORKOUT,1,182\r\n"
        "2024-02-02,workout,2,\r\n"
        "2024-02-03,REST,0,181.5\r\n"
        "2024-02-04,REST,3,\r\n"
        "2024-02-05,WORKOUT,6,\r\n"
        "02/06/2024,WORKOUT,1,\r\n"
        "2024-02-07,WORKOUT,1,-4\r\n"
        "\r\n"
    )
    result = await BackupService(store).import_template(text)
    assert result["sessions"] == 2
    assert result["metrics"] == 2
    assert [s["line"] for s in result["skipped"]] == [2, 5, 6, 7, 8]
    existing = await store.sessions.fetch_by_date("2024-02-01")
    assert existing["id"] == "session_existing"
    metric = await store.metrics.fetch_by_date("2024-02-01")
    assert metric["bodyweight_lb"] == 182.0
    assert (await store.sessions.fetch_by_date("2024-02-02"))["day_number"] == 2
    assert await store.state.fetch() is None


@pytest.mark.asyncio
async def test_template_header_must_match(store):
    with pytest.raises(ValidationError):
        await BackupService(store).import_template("date,type,day\r\n2024-01-01,REST,0\r\n")
    template = BackupService.template_csv()
    assert template.startswith("date,type,dayNumber,bodyweightLb\r\n")
