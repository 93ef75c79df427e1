import sqlite3
import aiosqlite
import logging
import time
import uuid
from contextlib import contextmanager, asynccontextmanager
from typing import Iterable, List, Optional, Tuple

from config import YamlConfig
from errors import StorageError
from settings_schema import validate_settings

_LOGGER = logging.getLogger(__name__)

STATE_KEY = "current"


def now_ms() -> int:
    """Return the current time as epoch milliseconds."""
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "sessions": (
            """CREATE TABLE sessions (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL UNIQUE,
                    type TEXT NOT NULL CHECK (type IN ('WORKOUT', 'REST')),
                    day_number INTEGER NOT NULL,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                );""",
            ["id", "date", "type", "day_number", "created_at", "updated_at"],
        ),
        "set_logs": (
            """CREATE TABLE set_logs (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    type TEXT NOT NULL DEFAULT 'WORKOUT',
                    day_number INTEGER NOT NULL,
                    exercise_name TEXT NOT NULL,
                    set_number INTEGER NOT NULL,
                    reps INTEGER NOT NULL,
                    weight REAL NOT NULL,
                    created_at INTEGER NOT NULL
                );""",
            [
                "id",
                "session_id",
                "date",
                "type",
                "day_number",
                "exercise_name",
                "set_number",
                "reps",
                "weight",
                "created_at",
            ],
        ),
        "metrics": (
            """CREATE TABLE metrics (
                    date TEXT PRIMARY KEY,
                    bodyweight_lb REAL,
                    calories REAL,
                    updated_at INTEGER NOT NULL
                );""",
            ["date", "bodyweight_lb", "calories", "updated_at"],
        ),
        "cycle_state": (
            """CREATE TABLE cycle_state (
                    id TEXT PRIMARY KEY,
                    active INTEGER NOT NULL DEFAULT 0,
                    start_date TEXT,
                    completed_days TEXT NOT NULL DEFAULT '',
                    rest_days_used INTEGER NOT NULL DEFAULT 0
                );""",
            ["id", "active", "start_date", "completed_days", "rest_days_used"],
        ),
        "settings": (
            """CREATE TABLE settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
    }

    _INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_sessions_created ON sessions (created_at);",
        "CREATE INDEX IF NOT EXISTS idx_set_logs_session ON set_logs (session_id);",
        "CREATE INDEX IF NOT EXISTS idx_set_logs_day_exercise ON set_logs (day_number, exercise_name);",
    ]

    def __init__(self, db_path: str = "fitplan.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._ensure_indexes()
        self._init_settings()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)

    def _ensure_indexes(self) -> None:
        with self._connection() as conn:
            for sql in self._INDEXES:
                conn.execute(sql)

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        _LOGGER.info("Migrating table %s from columns %s", table, existing_cols)
        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "type":
                        return "'WORKOUT'"
                    if col in ("day_number", "rest_days_used", "active"):
                        return "0"
                    if col == "completed_days":
                        return "''"
                    if col in ("created_at", "updated_at"):
                        return "0"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def _init_settings(self) -> None:
        defaults = {
            "weight_unit": "lb",
            "rest_seconds_isolation": "60",
            "rest_seconds_compound": "120",
            "isolation_keywords": "raise,fly,curl,pushdown,extension,face pull,shrug,calf,plank,crunch,rotation",
            "recent_sessions_limit": "30",
        }
        with self._connection() as conn:
            for key, value in defaults.items():
                conn.execute(
                    "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?);",
                    (key, value),
                )


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite.

    Every sqlite failure is re-raised as :class:`StorageError`.
    """

    async def execute(self, query: str, params: Tuple = ()) -> int:
        try:
            async with self._async_connection() as conn:
                cursor = await conn.execute(query, params)
                await conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            _LOGGER.warning("Storage write failed: %s", e)
            raise StorageError(str(e)) from e

    async def executemany(self, query: str, rows: Iterable[Tuple]) -> None:
        try:
            async with self._async_connection() as conn:
                await conn.executemany(query, list(rows))
                await conn.commit()
        except sqlite3.Error as e:
            _LOGGER.warning("Storage bulk write failed: %s", e)
            raise StorageError(str(e)) from e

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        try:
            async with self._async_connection() as conn:
                cursor = await conn.execute(query, params)
                rows = await cursor.fetchall()
                return list(rows)
        except sqlite3.Error as e:
            _LOGGER.warning("Storage read failed: %s", e)
            raise StorageError(str(e)) from e

    async def _delete_all(self, table: str) -> None:
        await self.execute(f"DELETE FROM {table};")


class AsyncSessionRepository(AsyncBaseRepository):
    """Async repository for the sessions table (one row per calendar date)."""

    _COLUMNS = "id, date, type, day_number, created_at, updated_at"

    @staticmethod
    def _row(row: Tuple) -> dict:
        return {
            "id": row[0],
            "date": row[1],
            "type": row[2],
            "day_number": int(row[3]),
            "created_at": row[4],
            "updated_at": row[5],
        }

    async def fetch_by_date(self, date: str) -> Optional[dict]:
        rows = await self.fetch_all(
            f"SELECT {self._COLUMNS} FROM sessions WHERE date = ?;", (date,)
        )
        return self._row(rows[0]) if rows else None

    async def upsert(self, session: dict) -> None:
        """Insert or update by id. A second session on the same date fails."""
        await self.execute(
            "INSERT INTO sessions (id, date, type, day_number, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET date=excluded.date, type=excluded.type, "
            "day_number=excluded.day_number, updated_at=excluded.updated_at;",
            (
                session["id"],
                session["date"],
                session["type"],
                session["day_number"],
                session["created_at"],
                session["updated_at"],
            ),
        )

    async def fetch_range(self, start_date: str, end_date: str) -> List[dict]:
        rows = await self.fetch_all(
            f"SELECT {self._COLUMNS} FROM sessions WHERE date >= ? AND date <= ? ORDER BY date;",
            (start_date, end_date),
        )
        return [self._row(r) for r in rows]

    async def fetch_recent(self, limit: int = 10) -> List[dict]:
        rows = await self.fetch_all(
            f"SELECT {self._COLUMNS} FROM sessions ORDER BY created_at DESC, date DESC LIMIT ?;",
            (limit,),
        )
        return [self._row(r) for r in rows]

    async def fetch_all_rows(self) -> List[dict]:
        rows = await self.fetch_all(
            f"SELECT {self._COLUMNS} FROM sessions ORDER BY date;"
        )
        return [self._row(r) for r in rows]

    async def delete(self, session_id: str) -> None:
        await self.execute("DELETE FROM sessions WHERE id = ?;", (session_id,))

    async def delete_all(self) -> None:
        await self._delete_all("sessions")

    async def bulk_upsert(self, sessions: Iterable[dict]) -> None:
        await self.executemany(
            "INSERT INTO sessions (id, date, type, day_number, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET date=excluded.date, type=excluded.type, "
            "day_number=excluded.day_number, created_at=excluded.created_at, "
            "updated_at=excluded.updated_at;",
            (
                (
                    s["id"],
                    s["date"],
                    s["type"],
                    s["day_number"],
                    s["created_at"],
                    s["updated_at"],
                )
                for s in sessions
            ),
        )


class AsyncSetLogRepository(AsyncBaseRepository):
    """Async repository for per-set weight logs."""

    _COLUMNS = (
        "id, session_id, date, type, day_number, exercise_name, set_number, reps, weight, created_at"
    )

    @staticmethod
    def _row(row: Tuple) -> dict:
        return {
            "id": row[0],
            "session_id": row[1],
            "date": row[2],
            "type": row[3],
            "day_number": int(row[4]),
            "exercise_name": row[5],
            "set_number": int(row[6]),
            "reps": int(row[7]),
            "weight": float(row[8]),
            "created_at": row[9],
        }

    @staticmethod
    def _params(log: dict) -> Tuple:
        return (
            log["id"],
            log["session_id"],
            log["date"],
            log.get("type", "WORKOUT"),
            log["day_number"],
            log["exercise_name"],
            log["set_number"],
            log["reps"],
            log["weight"],
            log["created_at"],
        )

    async def add(self, log: dict) -> None:
        await self.execute(
            "INSERT INTO set_logs (id, session_id, date, type, day_number, exercise_name, set_number, reps, weight, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
            self._params(log),
        )

    async def delete_for_session(self, session_id: str) -> int:
        return await self.execute(
            "DELETE FROM set_logs WHERE session_id = ?;", (session_id,)
        )

    async def fetch_for_session(self, session_id: str) -> List[dict]:
        rows = await self.fetch_all(
            f"SELECT {self._COLUMNS} FROM set_logs WHERE session_id = ? "
            "ORDER BY rowid;",
            (session_id,),
        )
        return [self._row(r) for r in rows]

    async def fetch_history(
        self,
        day_number: int,
        exercise_name: str,
        before: Optional[str] = None,
        positive_only: bool = False,
    ) -> List[dict]:
        """Return logs for a day/exercise, oldest first, ties in insertion order."""
        query = (
            f"SELECT {self._COLUMNS} FROM set_logs "
            "WHERE day_number = ? AND exercise_name = ?"
        )
        params: list = [day_number, exercise_name]
        if before:
            query += " AND date < ?"
            params.append(before)
        if positive_only:
            query += " AND weight > 0"
        query += " ORDER BY date, created_at, rowid;"
        rows = await self.fetch_all(query, tuple(params))
        return [self._row(r) for r in rows]

    async def fetch_all_rows(self) -> List[dict]:
        rows = await self.fetch_all(
            f"SELECT {self._COLUMNS} FROM set_logs ORDER BY rowid;"
        )
        return [self._row(r) for r in rows]

    async def delete_all(self) -> None:
        await self._delete_all("set_logs")

    async def bulk_upsert(self, logs: Iterable[dict]) -> None:
        await self.executemany(
            "INSERT OR REPLACE INTO set_logs (id, session_id, date, type, day_number, exercise_name, set_number, reps, weight, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
            (self._params(log) for log in logs),
        )


class AsyncMetricRepository(AsyncBaseRepository):
    """Async repository for daily bodyweight/calorie metrics."""

    @staticmethod
    def _row(row: Tuple) -> dict:
        return {
            "date": row[0],
            "bodyweight_lb": None if row[1] is None else float(row[1]),
            "calories": None if row[2] is None else float(row[2]),
            "updated_at": row[3],
        }

    async def fetch_by_date(self, date: str) -> Optional[dict]:
        rows = await self.fetch_all(
            "SELECT date, bodyweight_lb, calories, updated_at FROM metrics WHERE date = ?;",
            (date,),
        )
        return self._row(rows[0]) if rows else None

    async def upsert(self, metric: dict) -> None:
        await self.execute(
            "INSERT INTO metrics (date, bodyweight_lb, calories, updated_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(date) DO UPDATE SET bodyweight_lb=excluded.bodyweight_lb, "
            "calories=excluded.calories, updated_at=excluded.updated_at;",
            (
                metric["date"],
                metric.get("bodyweight_lb"),
                metric.get("calories"),
                metric["updated_at"],
            ),
        )

    async def fetch_range(self, start_date: str, end_date: str) -> List[dict]:
        rows = await self.fetch_all(
            "SELECT date, bodyweight_lb, calories, updated_at FROM metrics "
            "WHERE date >= ? AND date <= ? ORDER BY date;",
            (start_date, end_date),
        )
        return [self._row(r) for r in rows]

    async def fetch_all_rows(self) -> List[dict]:
        rows = await self.fetch_all(
            "SELECT date, bodyweight_lb, calories, updated_at FROM metrics ORDER BY date;"
        )
        return [self._row(r) for r in rows]

    async def delete_all(self) -> None:
        await self._delete_all("metrics")

    async def bulk_upsert(self, metrics: Iterable[dict]) -> None:
        await self.executemany(
            "INSERT OR REPLACE INTO metrics (date, bodyweight_lb, calories, updated_at) VALUES (?, ?, ?, ?);",
            (
                (m["date"], m.get("bodyweight_lb"), m.get("calories"), m["updated_at"])
                for m in metrics
            ),
        )


class AsyncCycleStateRepository(AsyncBaseRepository):
    """Single-slot storage for the current cycle state."""

    async def fetch(self) -> Optional[dict]:
        rows = await self.fetch_all(
            "SELECT active, start_date, completed_days, rest_days_used FROM cycle_state WHERE id = ?;",
            (STATE_KEY,),
        )
        if not rows:
            return None
        active, start_date, completed, rest = rows[0]
        return {
            "active": bool(active),
            "start_date": start_date,
            "completed_workout_days": [int(d) for d in str(completed).split(",") if d],
            "rest_days_used": int(rest),
        }

    async def put(self, state: dict) -> None:
        completed = ",".join(str(d) for d in sorted(state["completed_workout_days"]))
        await self.execute(
            "INSERT INTO cycle_state (id, active, start_date, completed_days, rest_days_used) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET active=excluded.active, start_date=excluded.start_date, "
            "completed_days=excluded.completed_days, rest_days_used=excluded.rest_days_used;",
            (
                STATE_KEY,
                int(bool(state["active"])),
                state["start_date"],
                completed,
                int(state["rest_days_used"]),
            ),
        )

    async def delete(self) -> None:
        await self.execute("DELETE FROM cycle_state WHERE id = ?;", (STATE_KEY,))


class RecordStore:
    """Bundles the per-kind repositories and the procedures that span them.

    None of the multi-step procedures are transactional. Each one is written so
    that running it again after an interruption converges to the same result.
    """

    def __init__(self, db_path: str = "fitplan.db") -> None:
        self.db_path = db_path
        self.sessions = AsyncSessionRepository(db_path)
        self.set_logs = AsyncSetLogRepository(db_path)
        self.metrics = AsyncMetricRepository(db_path)
        self.state = AsyncCycleStateRepository(db_path)

    async def replace_set_logs(self, session_id: str, logs: Iterable[dict]) -> int:
        """Delete every log of a session, then insert ``logs``."""
        await self.set_logs.delete_for_session(session_id)
        count = 0
        for log in logs:
            await self.set_logs.add(log)
            count += 1
        return count

    async def delete_sessions_in_range(self, start_date: str, end_date: str) -> int:
        """Delete sessions dated in [start_date, end_date] and their set logs."""
        sessions = await self.sessions.fetch_range(start_date, end_date)
        for session in sessions:
            await self.set_logs.delete_for_session(session["id"])
        for session in sessions:
            await self.sessions.delete(session["id"])
        _LOGGER.info(
            "Purged %d session(s) between %s and %s", len(sessions), start_date, end_date
        )
        return len(sessions)

    async def clear_all(self) -> None:
        await self.set_logs.delete_all()
        await self.sessions.delete_all()
        await self.metrics.delete_all()
        await self.state.delete()


class SettingsRepository(BaseRepository):
    """Repository for general application settings synchronized with YAML."""

    def __init__(
        self, db_path: str = "fitplan.db", yaml_path: str = "settings.yaml"
    ) -> None:
        super().__init__(db_path)
        self._yaml = YamlConfig(yaml_path)
        self._sync_from_yaml()
        self._sync_to_yaml()

    def _raw_all_settings(self) -> dict:
        rows = self.fetch_all("SELECT key, value FROM settings ORDER BY key;")
        result: dict[str, float | str] = {}
        for k, v in rows:
            try:
                num = float(v)
            except ValueError:
                result[k] = v
                continue
            result[k] = int(num) if num.is_integer() else num
        return result

    def _sync_from_yaml(self) -> None:
        data = self._yaml.load()
        if not data:
            return
        validate_settings(data)
        with self._connection() as conn:
            for key, value in data.items():
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                    (key, str(value)),
                )

    def _sync_to_yaml(self) -> None:
        self._yaml.save(self._raw_all_settings())

    def get_text(self, key: str, default: str) -> str:
        self._sync_from_yaml()
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        return rows[0][0] if rows else default

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(float(self.get_text(key, str(default))))
        except ValueError:
            return default

    def set_text(self, key: str, value: str) -> None:
        self.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )
        self._sync_to_yaml()

    def set_int(self, key: str, value: int) -> None:
        self.set_text(key, str(value))

    def get_list(self, key: str) -> list[str]:
        val = self.get_text(key, "")
        return [v.strip() for v in val.split(",") if v.strip()]

    def all_settings(self) -> dict:
        self._sync_from_yaml()
        return self._raw_all_settings()
