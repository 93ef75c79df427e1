"""Backup snapshots, CSV exports and the bulk-import template.

A snapshot is a JSON object::

    {"schemaVersion": 1, "exportedAt": "...", "sessions": [...],
     "setLogs": [...], "metrics": [...], "cycleState": {...}}

Rows use the camelCase wire names. Importing validates everything first and
only then replaces the whole store.
"""

from __future__ import annotations

import csv
import datetime
import io
import json
import logging
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from cycle_service import CycleService, CycleState, rebuild_state, sanitize_state
from db import RecordStore, new_id, now_ms
from errors import (
    MalformedInput,
    ReferentialError,
    UnsupportedSchemaVersion,
    ValidationError,
)
from plan import WORKOUT_DAYS, check_date, iso_date

_LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SESSION_COLUMNS = ["id", "date", "type", "dayNumber", "createdAt", "updatedAt"]
SET_LOG_COLUMNS = [
    "id",
    "sessionId",
    "date",
    "type",
    "dayNumber",
    "exerciseName",
    "setNumber",
    "reps",
    "weight",
    "createdAt",
]
METRIC_COLUMNS = ["date", "bodyweightLb", "calories", "updatedAt"]
TEMPLATE_COLUMNS = ["date", "type", "dayNumber", "bodyweightLb"]


def _not_bool(value):
    if isinstance(value, bool):
        raise ValueError("must be a number, not a boolean")
    return value


IsoDate = Annotated[str, AfterValidator(check_date)]
WholeNumber = Annotated[int, BeforeValidator(_not_bool)]


def _whole(value: float):
    return int(value) if float(value).is_integer() else value


class _Row(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SessionRow(_Row):
    id: str = Field(min_length=1)
    date: IsoDate
    type: Literal["WORKOUT", "REST"]
    day_number: WholeNumber = Field(alias="dayNumber", ge=0, le=5)
    created_at: float = Field(alias="createdAt", allow_inf_nan=False)
    updated_at: float = Field(alias="updatedAt", allow_inf_nan=False)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _timestamps(cls, v):
        return _whole(v)


class SetLogRow(_Row):
    id: str = Field(min_length=1)
    session_id: str = Field(alias="sessionId", min_length=1)
    date: IsoDate
    type: Literal["WORKOUT", "REST"] = "WORKOUT"
    day_number: WholeNumber = Field(alias="dayNumber", ge=0, le=5)
    exercise_name: str = Field(alias="exerciseName", min_length=1)
    set_number: WholeNumber = Field(alias="setNumber", ge=1)
    reps: WholeNumber = Field(ge=0)
    weight: float = Field(ge=0, allow_inf_nan=False)
    created_at: float = Field(alias="createdAt", allow_inf_nan=False)

    @field_validator("created_at")
    @classmethod
    def _timestamp(cls, v):
        return _whole(v)


class MetricRow(_Row):
    date: IsoDate
    bodyweight_lb: Optional[float] = Field(None, alias="bodyweightLb", gt=0, allow_inf_nan=False)
    calories: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    updated_at: float = Field(alias="updatedAt", allow_inf_nan=False)

    @field_validator("updated_at")
    @classmethod
    def _timestamp(cls, v):
        return _whole(v)


_ROW_MODELS = {
    "sessions": SessionRow,
    "setLogs": SetLogRow,
    "metrics": MetricRow,
}


def validate_rows(kind: str, rows) -> list[dict]:
    """Validate every row of one kind and return them as snake_case dicts."""
    model = _ROW_MODELS[kind]
    if not isinstance(rows, list):
        raise ValidationError(f"{kind} must be an array", kind=kind)
    out = []
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise ValidationError(f"{kind}[{index}] is not an object", kind=kind, index=index)
        try:
            out.append(model.model_validate(row).model_dump())
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first["loc"]) or None
            raise ValidationError(
                f"{kind}[{index}].{field}: {first['msg']}",
                kind=kind,
                index=index,
                field=field,
            ) from None
    return out


def _check_unique(kind: str, rows: list[dict], key: str) -> None:
    seen = set()
    for index, row in enumerate(rows):
        if row[key] in seen:
            raise ValidationError(
                f"{kind}[{index}] duplicates {key} {row[key]!r}",
                kind=kind,
                index=index,
                field=key,
            )
        seen.add(row[key])


def _to_wire(kind: str, row: dict) -> dict:
    return _ROW_MODELS[kind].model_validate(row).model_dump(by_alias=True)


def state_to_wire(state: CycleState) -> dict:
    return {
        "id": "current",
        "active": state.active,
        "startDate": state.start_date,
        "completedWorkoutDays": state.completed_days,
        "restDaysUsed": state.rest_days_used,
    }


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_csv(rows: list[dict], columns: list[str]) -> str:
    """Render rows with a header. Lines end with CRLF."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\r\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_cell(row.get(col)) for col in columns])
    return output.getvalue()


class BackupService:
    """Exports and restores the whole record store."""

    def __init__(self, store: RecordStore, cycle: Optional[CycleService] = None) -> None:
        self.store = store
        self.cycle = cycle or CycleService(store)

    async def _wire_rows(self) -> dict[str, list[dict]]:
        sessions = await self.store.sessions.fetch_all_rows()
        set_logs = await self.store.set_logs.fetch_all_rows()
        metrics = await self.store.metrics.fetch_all_rows()
        return {
            "sessions": [_to_wire("sessions", r) for r in sessions],
            "setLogs": [_to_wire("setLogs", r) for r in set_logs],
            "metrics": [_to_wire("metrics", r) for r in metrics],
        }

    async def export_snapshot(self) -> dict:
        rows = await self._wire_rows()
        raw_state = await self.store.state.fetch()
        state = CycleState.from_dict(raw_state) if raw_state else None
        return {
            "schemaVersion": SCHEMA_VERSION,
            "exportedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "sessions": rows["sessions"],
            "setLogs": rows["setLogs"],
            "metrics": rows["metrics"],
            "cycleState": state_to_wire(state) if state else None,
        }

    async def dumps(self) -> str:
        return json.dumps(await self.export_snapshot(), indent=2)

    @staticmethod
    def parse(raw) -> dict:
        """Decode a snapshot from text, bytes or an already parsed mapping."""
        if isinstance(raw, (str, bytes, bytearray)):
            try:
                raw = json.loads(raw)
            except ValueError:
                raise MalformedInput("backup is not valid JSON") from None
        if not isinstance(raw, dict) or "schemaVersion" not in raw:
            raise MalformedInput("backup has no schemaVersion")
        version = raw["schemaVersion"]
        if isinstance(version, bool) or version != SCHEMA_VERSION:
            raise UnsupportedSchemaVersion(version)
        return raw

    async def import_snapshot(self, raw, today=None) -> dict:
        """Validate ``raw`` and replace every stored record with it.

        Nothing is written unless the whole snapshot validates. The cycle state
        comes from the snapshot when it is usable, otherwise it is rebuilt from
        the imported sessions.
        """
        today = iso_date(today)
        snapshot = self.parse(raw)
        sessions = validate_rows("sessions", snapshot.get("sessions"))
        set_logs = validate_rows("setLogs", snapshot.get("setLogs"))
        metrics = validate_rows("metrics", snapshot.get("metrics"))
        _check_unique("sessions", sessions, "id")
        _check_unique("sessions", sessions, "date")
        _check_unique("setLogs", set_logs, "id")
        _check_unique("metrics", metrics, "date")
        session_ids = {s["id"] for s in sessions}
        for log in set_logs:
            if log["session_id"] not in session_ids:
                raise ReferentialError(
                    f"setLog {log['id']} references unknown session {log['session_id']}",
                    missing_id=log["session_id"],
                )

        await self.store.clear_all()
        await self.store.sessions.bulk_upsert(sessions)
        await self.store.set_logs.bulk_upsert(set_logs)
        await self.store.metrics.bulk_upsert(metrics)

        raw_state = snapshot.get("cycleState", snapshot.get("weekState"))
        state = sanitize_state(raw_state)
        source = "snapshot"
        if state is None:
            state = rebuild_state(sessions, today)
            source = "rebuilt"
        await self.cycle.replace(state)
        _LOGGER.info(
            "Restored %d session(s), %d set log(s), %d metric(s); cycle state %s",
            len(sessions),
            len(set_logs),
            len(metrics),
            source,
        )
        return {
            "sessions": len(sessions),
            "set_logs": len(set_logs),
            "metrics": len(metrics),
            "cycle_state": state.to_dict(),
            "state_source": source,
        }

    async def export_csv(self, kind: str) -> str:
        columns = {
            "sessions": SESSION_COLUMNS,
            "setLogs": SET_LOG_COLUMNS,
            "metrics": METRIC_COLUMNS,
        }
        if kind not in columns:
            raise ValidationError(f"unknown export kind: {kind}", kind=kind)
        rows = await self._wire_rows()
        return to_csv(rows[kind], columns[kind])

    @staticmethod
    def template_csv() -> str:
        today = iso_date()
        return to_csv(
            [
                {"date": today, "type": "WORKOUT", "dayNumber": 1, "bodyweightLb": 180},
                {"date": today, "type": "REST", "dayNumber": 0, "bodyweightLb": None},
            ],
            TEMPLATE_COLUMNS,
        )

    @staticmethod
    def _template_row(cells: list[str]) -> tuple[str, str, int, Optional[float]]:
        if len(cells) != len(TEMPLATE_COLUMNS):
            raise ValueError(f"expected {len(TEMPLATE_COLUMNS)} cells, got {len(cells)}")
        date, kind, day_raw, bw_raw = (c.strip() for c in cells)
        check_date(date)
        kind = kind.upper()
        if kind not in ("WORKOUT", "REST"):
            raise ValueError(f"type must be WORKOUT or REST, got {kind!r}")
        try:
            day = int(day_raw)
        except ValueError:
            raise ValueError(f"dayNumber must be an integer, got {day_raw!r}") from None
        if kind == "WORKOUT" and day not in WORKOUT_DAYS:
            raise ValueError("dayNumber must be 1-5 for WORKOUT")
        if kind == "REST" and day != 0:
            raise ValueError("dayNumber must be 0 for REST")
        bodyweight = None
        if bw_raw:
            try:
                bodyweight = float(bw_raw)
            except ValueError:
                raise ValueError(f"bodyweightLb must be a number, got {bw_raw!r}") from None
            if not (bodyweight > 0 and bodyweight != float("inf")):
                raise ValueError("bodyweightLb must be positive")
        return date, kind, day, bodyweight

    async def import_template(self, text: str) -> dict:
        """Add sessions and bodyweights from a filled-in template.

        Bad rows are skipped and reported. The cycle state is not touched.
        """
        reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
        header = next(reader, None)
        if header is None or [h.strip() for h in header] != TEMPLATE_COLUMNS:
            raise ValidationError(
                f"template header must be {','.join(TEMPLATE_COLUMNS)}", kind="template"
            )
        added = 0
        metrics_saved = 0
        skipped: list[dict] = []
        for line_no, cells in enumerate(reader, start=2):
            if not any(c.strip() for c in cells):
                continue
            try:
                date, kind, day, bodyweight = self._template_row(cells)
            except ValueError as e:
                skipped.append({"line": line_no, "reason": str(e)})
                continue
            stamp = now_ms()
            if await self.store.sessions.fetch_by_date(date):
                skipped.append({"line": line_no, "reason": f"{date} already has a session"})
            else:
                await self.store.sessions.upsert(
                    {
                        "id": new_id("session"),
                        "date": date,
                        "type": kind,
                        "day_number": day,
                        "created_at": stamp,
                        "updated_at": stamp,
                    }
                )
                added += 1
            if bodyweight is not None:
                metric = await self.store.metrics.fetch_by_date(date) or {
                    "date": date,
                    "calories": None,
                }
                metric["bodyweight_lb"] = bodyweight
                metric["updated_at"] = stamp
                await self.store.metrics.upsert(metric)
                metrics_saved += 1
        _LOGGER.info(
            "Template import: %d session(s), %d metric(s), %d row(s) skipped",
            added,
            metrics_saved,
            len(skipped),
        )
        return {"sessions": added, "metrics": metrics_saved, "skipped": skipped}
