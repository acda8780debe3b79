# tests/conftest.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from folio_sync.broker.credential_store import CredentialStore
from folio_sync.storage.database import Database
from folio_sync.tasks.execution_ledger import ExecutionLedger

from .fakes import FakeClock


@pytest.fixture()
def db(tmp_path: Path) -> Database:
    return Database(tmp_path / "folio.sqlite3", busy_timeout=1.0)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def ledger(db: Database, clock: FakeClock) -> ExecutionLedger:
    """
    Ledger on a real SQLite file with a settable clock.

    We keep real SQLite here because upsert/transaction behaviour is part of what we test.
    """
    return ExecutionLedger(db, clock=clock)


@pytest.fixture()
def live_ledger(db: Database) -> ExecutionLedger:
    """Ledger on the wall clock, for scheduler tests that compare against datetime.now()."""
    return ExecutionLedger(db)


@pytest.fixture()
def credentials(db: Database, clock: FakeClock) -> CredentialStore:
    return CredentialStore(db, clock=clock)


@pytest.fixture()
def restore_root_logging():
    """setup_logging() replaces the root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)
