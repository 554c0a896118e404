from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Any

from endpoint_checks.results import CheckResult, TriState


SCHEMA_VERSION = 1


def _utc_ts() -> int:
    return int(time.time())


def _tri_to_db(value: TriState) -> int | None:
    b = value.to_optional_bool()
    return None if b is None else int(b)


def _tri_from_db(value: Any) -> TriState:
    if value is None:
        return TriState.NOT_APPLICABLE
    return TriState.from_optional_bool(bool(value))


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    # WAL is unavailable for in-memory databases and some filesystems.
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.DatabaseError:
        pass
    return conn


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS check_result (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          timestamp_utc INTEGER NOT NULL,
          target_id TEXT NOT NULL,
          status_code_ok INTEGER, -- NULL: no expected status code configured
          content_ok INTEGER, -- NULL: no expected content configured
          error_message TEXT,
          succeeded INTEGER NOT NULL,
          skip INTEGER NOT NULL DEFAULT 0
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_check_result_ts ON check_result(timestamp_utc);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_check_result_target_ts ON check_result(target_id, timestamp_utc);")


def _row_to_result(row: sqlite3.Row) -> CheckResult:
    return CheckResult(
        id=int(row["id"]),
        timestamp_utc=int(row["timestamp_utc"]),
        target_id=str(row["target_id"]),
        status_code_ok=_tri_from_db(row["status_code_ok"]),
        content_ok=_tri_from_db(row["content_ok"]),
        error_message=row["error_message"],
        succeeded=bool(row["succeeded"]),
        skip=bool(row["skip"]),
    )


class ResultStore:
    """
    SQLite-backed history of check results.

    Rows are inserted once per target per cycle and only ever removed by
    delete_older_than.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn = _connect(db_path)
        _ensure_schema_conn(self._conn)

    def close(self) -> None:
        self._conn.close()

    def insert(self, result: CheckResult) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO check_result (timestamp_utc, target_id, status_code_ok, content_ok, error_message, succeeded, skip)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(result.timestamp_utc),
                str(result.target_id),
                _tri_to_db(result.status_code_ok),
                _tri_to_db(result.content_ok),
                result.error_message,
                int(bool(result.succeeded)),
                int(bool(result.skip)),
            ),
        )
        return int(cur.lastrowid)

    def delete_older_than(self, age_seconds: float, *, now: float | None = None) -> int:
        now_ts = _utc_ts() if now is None else int(now)
        cur = self._conn.execute(
            "DELETE FROM check_result WHERE timestamp_utc < ?",
            (now_ts - int(age_seconds),),
        )
        return int(cur.rowcount or 0)

    def query_by_period(self, age_seconds: float, *, now: float | None = None) -> list[CheckResult]:
        now_ts = _utc_ts() if now is None else int(now)
        rows = self._conn.execute(
            "SELECT * FROM check_result WHERE timestamp_utc >= ? ORDER BY timestamp_utc ASC, id ASC",
            (now_ts - int(age_seconds),),
        ).fetchall()
        return [_row_to_result(r) for r in rows]

    def query_all(self) -> list[CheckResult]:
        rows = self._conn.execute("SELECT * FROM check_result ORDER BY timestamp_utc ASC, id ASC").fetchall()
        return [_row_to_result(r) for r in rows]
