# src/folio_sync/tasks/task_scheduler.py

from __future__ import annotations

"""
Background task scheduler.

One Scheduler per process, created in the composition root and passed around
explicitly (no module-level singleton). It:
- registers the fixed task set with the cron engine,
- runs startup-eligible tasks once at start() unless they already succeeded today,
- executes every fire in its own worker thread,
- on stop(): stops new fires, raises the shared cancel event, joins all workers.

Bookkeeping per run (scheduled, startup or manual):
  update_last_run -> task.run(cancel) -> update_last_successful_run (only on success)

A failing task is logged and left recorded as success=false; it never affects
the scheduler or other tasks. Manual and scheduled runs of the same task are
not serialized: whichever finishes last wins in the ledger.
"""

import logging
import threading
import time
from collections.abc import Callable, Sequence
from datetime import datetime

from ..core.ports import BackgroundTask, ExecutionRepo
from ..storage.database import Database
from .cron_engine import CronEngine, is_valid_expression, local_now
from .execution_ledger import ExecutionLedger
from .task_models import RunOrigin

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        tasks: Sequence[BackgroundTask],
        *,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        by_name: dict[str, BackgroundTask] = {}
        for task in tasks:
            if task.name in by_name:
                raise ValueError(f"duplicate task name: {task.name!r}")
            by_name[task.name] = task

        self._tasks = by_name
        self._clock = clock

        # Guards lifecycle flags and the entry map (not the storage).
        self._lock = threading.Lock()
        self._initialized = False
        self._running = False
        self._stopped = False
        self._engine: CronEngine | None = None
        self._ledger: ExecutionRepo | None = None
        self._entry_to_task: dict[int, str] = {}

        self._cancel = threading.Event()
        self._inflight = 0
        self._inflight_cond = threading.Condition()

    # ---- lifecycle ----

    def initialize(self, db: Database | None = None, *, ledger: ExecutionRepo | None = None) -> None:
        """Build the trigger engine and register tasks. Safe to call more than once."""
        with self._lock:
            if self._initialized:
                return
            if ledger is None:
                if db is None:
                    raise ValueError("initialize() needs a Database or an ExecutionRepo")
                ledger = ExecutionLedger(db)

            self._ledger = ledger
            self._engine = CronEngine(clock=self._clock)
            self._entry_to_task = {}
            for task in self._tasks.values():
                self._register(task)

            self._initialized = True
        logger.info("Background scheduler initialized with %d task(s)", len(self._entry_to_task))

    def _register(self, task: BackgroundTask) -> None:
        assert self._engine is not None
        if not is_valid_expression(task.schedule):
            logger.error("Failed to register task %s: invalid schedule %r", task.name, task.schedule)
            return

        entry_id = self._engine.add_job(task.schedule, lambda t=task: self._spawn(t, RunOrigin.SCHEDULE))
        self._entry_to_task[entry_id] = task.name
        logger.info(
            "Registered background task: %s (schedule: %s, entry ID: %d)",
            task.name,
            task.schedule,
            entry_id,
        )

    def start(self) -> None:
        with self._lock:
            if not self._initialized or self._engine is None:
                logger.error("Scheduler not initialized. Call initialize() first.")
                return
            if self._running:
                return
            if self._stopped:
                logger.error("Scheduler was stopped and cannot be restarted.")
                return

            self._engine.start()
            self._running = True
            logger.info("Background scheduler started")

            self._run_startup_tasks()

    def stop(self) -> None:
        """Stop firing, signal cancellation, then block until every worker has returned."""
        with self._lock:
            if not self._running:
                return

            logger.info("Stopping background scheduler...")
            assert self._engine is not None
            self._engine.stop()
            self._cancel.set()

            with self._inflight_cond:
                while self._inflight > 0:
                    self._inflight_cond.wait()

            self._running = False
            self._stopped = True
        logger.info("Background scheduler stopped")

    # ---- queries ----

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def in_flight(self) -> int:
        with self._inflight_cond:
            return self._inflight

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    def task_names(self) -> list[str]:
        return list(self._tasks)

    def get_next_run_times(self) -> dict[str, datetime]:
        with self._lock:
            if not self._running or self._engine is None:
                return {}
            out: dict[str, datetime] = {}
            for entry_id, _expr, next_run in self._engine.entries():
                if next_run is None:
                    continue
                out[self._entry_to_task.get(entry_id, f"Task-{entry_id}")] = next_run
            return out

    # ---- execution ----

    def _run_startup_tasks(self) -> None:
        assert self._ledger is not None
        for task in self._tasks.values():
            if not task.run_on_startup:
                continue

            try:
                should_run = self._ledger.should_run_today(task.name)
            except Exception:
                logger.exception("Failed to check if task %s should run today", task.name)
                continue

            if should_run:
                logger.info("Running startup task: %s", task.name)
                self._spawn(task, RunOrigin.STARTUP)
            else:
                logger.info("Skipping startup task %s (already run successfully today)", task.name)

    def _spawn(self, task: BackgroundTask, origin: RunOrigin) -> None:
        with self._inflight_cond:
            self._inflight += 1

        def worker() -> None:
            try:
                self._execute(task, origin)
            finally:
                with self._inflight_cond:
                    self._inflight -= 1
                    self._inflight_cond.notify_all()

        thread = threading.Thread(target=worker, name=f"task:{task.name}", daemon=True)
        try:
            thread.start()
        except BaseException:
            with self._inflight_cond:
                self._inflight -= 1
                self._inflight_cond.notify_all()
            raise

    def _execute(self, task: BackgroundTask, origin: RunOrigin) -> bool:
        assert self._ledger is not None
        name = task.name
        logger.info("Starting background task: %s (%s)", name, origin.value)
        started = time.monotonic()

        try:
            self._ledger.update_last_run(name)
        except Exception:
            logger.exception("Failed to update last run time for task %s", name)

        try:
            task.run(self._cancel)
        except Exception:
            logger.exception("Background task %s failed", name)
            return False

        logger.info("Background task %s completed in %.2fs", name, time.monotonic() - started)
        try:
            self._ledger.update_last_successful_run(name)
        except Exception:
            logger.exception("Failed to update last successful run time for task %s", name)
        return True

    def _get_task(self, task_name: str) -> BackgroundTask:
        task = self._tasks.get(task_name)
        if task is None:
            raise KeyError(task_name)
        return task

    def trigger(self, task_name: str) -> None:
        """Run a task now in a tracked worker thread (manual trigger)."""
        task = self._get_task(task_name)
        with self._lock:
            if not self._initialized:
                raise RuntimeError("Scheduler not initialized")
            if self._stopped:
                raise RuntimeError("Scheduler is stopped")
            self._spawn(task, RunOrigin.MANUAL)

    def run_now(self, task_name: str) -> bool:
        """Run a task synchronously in the calling thread. Returns True on success."""
        task = self._get_task(task_name)
        with self._lock:
            if not self._initialized:
                raise RuntimeError("Scheduler not initialized")
        return self._execute(task, RunOrigin.MANUAL)
