# src/folio_sync/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class RunOrigin(StrEnum):
    """Why a task body is being executed."""

    SCHEDULE = "schedule"
    STARTUP = "startup"
    MANUAL = "manual"


@dataclass(slots=True, frozen=True)
class TaskExecution:
    """
    One ledger row per task name.

    Timestamps are unix epoch seconds; last_successful_run is None until
    the task completes once.
    """

    id: int
    task_name: str
    last_run: float
    last_successful_run: float | None
    success: bool
    created_at: float
    updated_at: float

    def last_run_dt(self) -> datetime:
        return datetime.fromtimestamp(self.last_run).astimezone()

    def last_successful_run_dt(self) -> datetime | None:
        if self.last_successful_run is None:
            return None
        return datetime.fromtimestamp(self.last_successful_run).astimezone()
