# src/folio_sync/tasks/cron_engine.py

from __future__ import annotations

"""
Periodic trigger engine.

A single daemon thread sleeps until the earliest entry is due, then hands the
entry's job to the caller-provided callback. Jobs must not block: the scheduler
passes a callback that spawns a worker thread.

Cron expressions are evaluated with croniter in local time.
"""

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from croniter import croniter  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Upper bound for a single sleep, so wall-clock jumps (suspend, DST) are noticed.
_MAX_SLEEP_SECONDS = 60.0


def local_now() -> datetime:
    return datetime.now().astimezone()


def is_valid_expression(expression: str) -> bool:
    try:
        return bool(croniter.is_valid(expression))
    except Exception:
        return False


def next_fire_time(expression: str, after: datetime) -> datetime:
    return croniter(expression, after).get_next(datetime)


@dataclass(slots=True)
class CronEntry:
    entry_id: int
    expression: str
    job: Callable[[], None]
    next_run: datetime | None = None


class CronEngine:
    def __init__(self, *, clock: Callable[[], datetime] = local_now) -> None:
        self._clock = clock
        self._entries: dict[int, CronEntry] = {}
        self._ids = itertools.count(1)
        self._cond = threading.Condition()
        self._running = False
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        with self._cond:
            return self._running

    def add_job(self, expression: str, job: Callable[[], None]) -> int:
        if not is_valid_expression(expression):
            raise ValueError(f"invalid cron expression: {expression!r}")

        with self._cond:
            entry_id = next(self._ids)
            entry = CronEntry(entry_id=entry_id, expression=expression, job=job)
            if self._running:
                entry.next_run = next_fire_time(expression, self._clock())
                self._cond.notify_all()
            self._entries[entry_id] = entry
            return entry_id

    def entries(self) -> list[tuple[int, str, datetime | None]]:
        """Snapshot of (entry_id, expression, next_run)."""
        with self._cond:
            return [(e.entry_id, e.expression, e.next_run) for e in self._entries.values()]

    def start(self) -> None:
        with self._cond:
            if self._running:
                return
            now = self._clock()
            for entry in self._entries.values():
                entry.next_run = next_fire_time(entry.expression, now)
            self._running = True
            self._thread = threading.Thread(target=self._loop, name="cron-engine", daemon=True)
            self._thread.start()
        logger.debug("Cron engine started with %d entries", len(self._entries))

    def stop(self) -> None:
        """Stop issuing fires. Jobs already handed out are not waited for here."""
        with self._cond:
            if not self._running:
                return
            self._running = False
            self._cond.notify_all()
            thread = self._thread
            self._thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=_MAX_SLEEP_SECONDS)
        logger.debug("Cron engine stopped")

    def run_pending(self, now: datetime | None = None) -> int:
        """Fire every entry whose next_run is <= now. Returns the number of jobs fired."""
        due: list[CronEntry] = []
        with self._cond:
            if not self._running:
                return 0
            now = now or self._clock()
            for entry in self._entries.values():
                if entry.next_run is not None and entry.next_run <= now:
                    entry.next_run = next_fire_time(entry.expression, now)
                    due.append(entry)

        for entry in due:
            try:
                entry.job()
            except Exception:
                logger.exception("Cron job dispatch failed entry_id=%s", entry.entry_id)
        return len(due)

    def _seconds_until_next(self) -> float:
        pending = [e.next_run for e in self._entries.values() if e.next_run is not None]
        if not pending:
            return _MAX_SLEEP_SECONDS
        delta = (min(pending) - self._clock()).total_seconds()
        return min(max(delta, 0.0), _MAX_SLEEP_SECONDS)

    def _loop(self) -> None:
        while True:
            with self._cond:
                if not self._running:
                    return
                timeout = self._seconds_until_next()
                if timeout > 0:
                    self._cond.wait(timeout)
                    continue
            self.run_pending()
