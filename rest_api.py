import json
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response

from autofill_service import AutofillService
from backup_service import BackupService
from config import APP_VERSION, DEFAULT_DB_PATH
from cycle_service import CycleService
from db import RecordStore, SettingsRepository
from errors import FitPlanError, SequenceError, StorageError
from plan import iso_date
from session_service import SessionService
from settings_schema import SettingsSchema, validate_settings
from workout_wizard import RestPolicy, WorkoutWizard

_LOGGER = logging.getLogger(__name__)

EXPORT_KINDS = ("sessions", "setLogs", "metrics")


def http_error(exc: Exception) -> HTTPException:
    """Map an application error to the HTTP status the API reports it with."""
    if isinstance(exc, SequenceError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, StorageError):
        _LOGGER.error("Storage failure: %s", exc)
        return HTTPException(status_code=500, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


class FitPlanAPI:
    """Provides REST endpoints for the weekly training cycle."""

    def __init__(
        self, db_path: str = DEFAULT_DB_PATH, yaml_path: str = "settings.yaml"
    ) -> None:
        self.db_path = db_path
        self.settings = SettingsRepository(db_path, yaml_path)
        self.store = RecordStore(db_path)
        self.cycle = CycleService(self.store)
        self.autofill = AutofillService(self.store.set_logs)
        self.sessions = SessionService(
            self.store,
            self.cycle,
            self.autofill,
            RestPolicy.from_settings(self.settings),
        )
        self.backup = BackupService(self.store, self.cycle)
        self.wizard: Optional[WorkoutWizard] = None
        self.app = FastAPI(
            title="FitPlan API",
            description="REST API for logging a seven-day training cycle",
        )
        self._setup_routes()

    def _current_wizard(self) -> WorkoutWizard:
        if self.wizard is None:
            raise HTTPException(status_code=404, detail="no workout in progress")
        return self.wizard

    def _setup_routes(self) -> None:
        @self.app.get("/health")
        def health():
            return {"status": "ok", "version": APP_VERSION}

        @self.app.get("/status")
        async def status(date: str = None):
            try:
                return await self.sessions.status(iso_date(date))
            except (FitPlanError, ValueError) as e:
                raise http_error(e)

        @self.app.get("/stats")
        async def stats(date: str = None):
            try:
                return await self.sessions.stats(iso_date(date))
            except (FitPlanError, ValueError) as e:
                raise http_error(e)

        @self.app.post("/rest")
        async def log_rest(date: str = None):
            try:
                return await self.sessions.log_rest(iso_date(date))
            except (FitPlanError, ValueError) as e:
                raise http_error(e)

        @self.app.post("/wizard")
        async def start_wizard(date: str = None):
            try:
                self.wizard = await self.sessions.start_workout(iso_date(date))
            except (FitPlanError, ValueError) as e:
                raise http_error(e)
            return self.wizard.view()

        @self.app.get("/wizard")
        def get_wizard():
            wizard = self._current_wizard()
            view = wizard.view()
            view["missing"] = len(wizard.missing_steps())
            return view

        @self.app.delete("/wizard")
        def discard_wizard():
            self.wizard = None
            return {"status": "discarded"}

        @self.app.put("/wizard/weight")
        def enter_weight(weight: str):
            wizard = self._current_wizard()
            try:
                wizard.enter_weight(weight)
            except ValueError as e:
                raise http_error(e)
            return wizard.view()

        @self.app.post("/wizard/next")
        def next_set():
            wizard = self._current_wizard()
            try:
                rest = wizard.advance()
            except ValueError as e:
                raise http_error(e)
            view = wizard.view()
            view["rest_seconds"] = rest
            return view

        @self.app.post("/wizard/back")
        def previous_set():
            wizard = self._current_wizard()
            wizard.back()
            return wizard.view()

        @self.app.post("/wizard/finish")
        async def finish_wizard(date: str = None):
            wizard = self._current_wizard()
            try:
                draft = wizard.finish()
                result = await self.sessions.save_workout(iso_date(date), draft)
            except (FitPlanError, ValueError) as e:
                raise http_error(e)
            self.wizard = None
            return result

        @self.app.get("/autofill")
        async def autofill(day: int, exercise: str, before: str = None):
            try:
                return await self.autofill.latest_weights(day, exercise, iso_date(before))
            except (FitPlanError, ValueError) as e:
                raise http_error(e)

        @self.app.get("/sessions/recent")
        async def recent_sessions(limit: int = None):
            if limit is None:
                limit = self.settings.get_int("recent_sessions_limit", 30)
            try:
                return await self.sessions.recent_sessions(limit)
            except FitPlanError as e:
                raise http_error(e)

        @self.app.post("/metrics/bodyweight")
        async def save_bodyweight(value: float, date: str = None):
            try:
                return await self.sessions.save_metric(iso_date(date), bodyweight_lb=value)
            except (FitPlanError, ValueError) as e:
                raise http_error(e)

        @self.app.post("/metrics/calories")
        async def save_calories(value: float, date: str = None):
            try:
                return await self.sessions.save_metric(iso_date(date), calories=value)
            except (FitPlanError, ValueError) as e:
                raise http_error(e)

        @self.app.get("/metrics")
        async def list_metrics(start: str, end: str):
            try:
                return await self.sessions.list_metrics(start, end)
            except (FitPlanError, ValueError) as e:
                raise http_error(e)

        @self.app.get("/backup")
        async def export_backup():
            try:
                data = await self.backup.export_snapshot()
            except FitPlanError as e:
                raise http_error(e)
            return Response(
                content=json.dumps(data, indent=2),
                media_type="application/json",
                headers={"Content-Disposition": "attachment; filename=fitplan_backup.json"},
            )

        @self.app.post("/backup")
        async def restore_backup(request: Request, date: str = None):
            body = await request.body()
            try:
                return await self.backup.import_snapshot(body, iso_date(date))
            except (FitPlanError, ValueError) as e:
                raise http_error(e)
            finally:
                self.wizard = None

        @self.app.get("/export/{kind}")
        async def export_csv(kind: str):
            if kind not in EXPORT_KINDS:
                raise HTTPException(status_code=404, detail=f"unknown export {kind}")
            try:
                data = await self.backup.export_csv(kind)
            except FitPlanError as e:
                raise http_error(e)
            return Response(
                content=data,
                media_type="text/csv",
                headers={"Content-Disposition": f"attachment; filename=fitplan_{kind.lower()}.csv"},
            )

        @self.app.get("/import/template")
        def template_csv():
            return Response(
                content=self.backup.template_csv(),
                media_type="text/csv",
                headers={"Content-Disposition": "attachment; filename=fitplan_template.csv"},
            )

        @self.app.post("/import/template")
        async def import_template(request: Request):
            body = await request.body()
            try:
                return await self.backup.import_template(body.decode("utf-8"))
            except (FitPlanError, ValueError) as e:
                raise http_error(e)

        @self.app.get("/settings")
        def get_settings():
            return self.settings.all_settings()

        @self.app.put("/settings/{key}")
        def update_setting(key: str, value: str):
            if key not in SettingsSchema.model_fields:
                raise HTTPException(status_code=404, detail=f"unknown setting {key}")
            try:
                validate_settings({**self.settings.all_settings(), key: value})
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            self.settings.set_text(key, value)
            self.sessions.rest_policy = RestPolicy.from_settings(self.settings)
            return {"status": "updated"}

        @self.app.post("/cycle/rebuild")
        async def rebuild_cycle(date: str = None):
            try:
                state = await self.sessions.rebuild_cycle(iso_date(date))
            except (FitPlanError, ValueError) as e:
                raise http_error(e)
            return state.to_dict()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(FitPlanAPI(DEFAULT_DB_PATH).app)
