# src/folio_sync/storage/database.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import TypeVar

from ..errors import TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BUSY_MARKERS = ("database is locked", "database table is locked", "busy")


def is_busy_error(exc: BaseException) -> bool:
    """True for sqlite errors caused by another writer holding the lock."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    msg = str(exc).lower()
    return any(marker in msg for marker in _BUSY_MARKERS)


def retry_on_busy(
    operation: Callable[[], T],
    *,
    attempts: int = 5,
    initial_backoff: float = 0.01,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run operation, retrying only on TransientStorageError.

    Backoff starts at initial_backoff seconds and doubles after every failed attempt.
    Any other exception propagates immediately. After the last attempt the
    TransientStorageError is re-raised.
    """
    attempts = max(1, int(attempts))
    backoff = float(initial_backoff)

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except TransientStorageError:
            if attempt == attempts:
                raise
            logger.debug("Storage busy (attempt %d/%d), retrying in %.3fs", attempt, attempts, backoff)
            sleep(backoff)
            backoff *= 2

    raise AssertionError("unreachable")


class Database:
    """
    Shared SQLite storage handle.

    Thread-safety:
    - each call opens its own short-lived connection
    - writes go through transaction(), which takes the write lock up front (BEGIN IMMEDIATE)
      so read-decide-write sequences cannot lose updates
    """

    def __init__(self, db_path: str | Path = "folio.sqlite3", *, busy_timeout: float = 5.0) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout = max(0.0, float(busy_timeout))
        logger.info("Database ready db=%s", self._db_path)

    @property
    def path(self) -> Path:
        return self._db_path

    def connect(self) -> sqlite3.Connection:
        # isolation_level=None: we issue BEGIN/COMMIT ourselves.
        conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        except sqlite3.OperationalError as exc:
            if is_busy_error(exc):
                raise TransientStorageError(str(exc)) from exc
            raise
        finally:
            conn.close()

    @contextlib.contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        except sqlite3.OperationalError as exc:
            if is_busy_error(exc):
                raise TransientStorageError(str(exc)) from exc
            raise
        finally:
            conn.close()

    def executescript(self, script: str) -> None:
        """Run DDL (CREATE TABLE IF NOT EXISTS ...) inside a write transaction."""

        def _run() -> None:
            with self.transaction() as conn:
                for statement in (s.strip() for s in script.split(";")):
                    if statement:
                        conn.execute(statement)

        retry_on_busy(_run)
