# src/folio_sync/tasks/execution_ledger.py

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from datetime import datetime

from ..storage.database import Database, retry_on_busy
from .task_models import TaskExecution

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS task_executions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_name TEXT NOT NULL UNIQUE,
    last_run REAL NOT NULL,
    last_successful_run REAL,
    success INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_task_executions_last_run ON task_executions(last_run)
"""


class ExecutionLedger:
    """
    Durable per-task run history.

    Bookkeeping protocol for every run:
    - update_last_run() before the task body (a crash leaves success=0 behind)
    - update_last_successful_run() only after the body returned cleanly

    should_run_today() compares local calendar dates, so a task that succeeded
    at 23:59 is eligible again at 00:00.
    """

    def __init__(
        self,
        db: Database,
        *,
        clock: Callable[[], float] = time.time,
        retry_attempts: int = 5,
        retry_backoff: float = 0.01,
    ) -> None:
        self._db = db
        self._clock = clock
        self._retry_attempts = retry_attempts
        self._retry_backoff = retry_backoff
        db.executescript(_SCHEMA)

    def _retry(self, operation: Callable[[], object]):
        return retry_on_busy(
            operation,
            attempts=self._retry_attempts,
            initial_backoff=self._retry_backoff,
        )

    @staticmethod
    def _row_to_execution(row: sqlite3.Row) -> TaskExecution:
        return TaskExecution(
            id=int(row["id"]),
            task_name=str(row["task_name"]),
            last_run=float(row["last_run"]),
            last_successful_run=(
                float(row["last_successful_run"]) if row["last_successful_run"] is not None else None
            ),
            success=bool(row["success"]),
            created_at=float(row["created_at"]),
            updated_at=float(row["updated_at"]),
        )

    # ---- writes ----

    def update_last_run(self, task_name: str) -> None:
        """Upsert: last_run = now, success = false."""
        if not task_name:
            raise ValueError("task_name is required")
        now = float(self._clock())

        def _upsert() -> None:
            with self._db.transaction() as conn:
                row = conn.execute(
                    "SELECT id FROM task_executions WHERE task_name = ?", (task_name,)
                ).fetchone()
                if row is None:
                    conn.execute(
                        """
                        INSERT INTO task_executions(
                            task_name, last_run, last_successful_run, success, created_at, updated_at
                        )
                        VALUES (?, ?, NULL, 0, ?, ?)
                        """,
                        (task_name, now, now, now),
                    )
                else:
                    conn.execute(
                        "UPDATE task_executions SET last_run = ?, success = 0, updated_at = ? WHERE id = ?",
                        (now, now, int(row["id"])),
                    )

        self._retry(_upsert)
        logger.debug("Ledger last_run task=%s ts=%s", task_name, now)

    def update_last_successful_run(self, task_name: str) -> None:
        """Upsert: last_run = last_successful_run = now, success = true."""
        if not task_name:
            raise ValueError("task_name is required")
        now = float(self._clock())

        def _upsert() -> None:
            with self._db.transaction() as conn:
                row = conn.execute(
                    "SELECT id FROM task_executions WHERE task_name = ?", (task_name,)
                ).fetchone()
                if row is None:
                    conn.execute(
                        """
                        INSERT INTO task_executions(
                            task_name, last_run, last_successful_run, success, created_at, updated_at
                        )
                        VALUES (?, ?, ?, 1, ?, ?)
                        """,
                        (task_name, now, now, now, now),
                    )
                else:
                    conn.execute(
                        """
                        UPDATE task_executions
                        SET last_run = ?, last_successful_run = ?, success = 1, updated_at = ?
                        WHERE id = ?
                        """,
                        (now, now, now, int(row["id"])),
                    )

        self._retry(_upsert)
        logger.debug("Ledger last_successful_run task=%s ts=%s", task_name, now)

    # ---- reads ----

    def get(self, task_name: str) -> TaskExecution | None:
        def _read() -> TaskExecution | None:
            with self._db.reading() as conn:
                row = conn.execute(
                    "SELECT * FROM task_executions WHERE task_name = ?", (task_name,)
                ).fetchone()
                return self._row_to_execution(row) if row else None

        return self._retry(_read)

    def list_executions(self) -> list[TaskExecution]:
        """All rows, most recently run first."""

        def _read() -> list[TaskExecution]:
            with self._db.reading() as conn:
                rows = conn.execute("SELECT * FROM task_executions ORDER BY last_run DESC").fetchall()
                return [self._row_to_execution(r) for r in rows]

        return self._retry(_read)

    def should_run_today(self, task_name: str) -> bool:
        execution = self.get(task_name)
        if execution is None or execution.last_successful_run is None:
            return True

        last_date = datetime.fromtimestamp(execution.last_successful_run).date()
        today = datetime.fromtimestamp(float(self._clock())).date()
        return last_date < today
