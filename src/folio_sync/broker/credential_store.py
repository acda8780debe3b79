# src/folio_sync/broker/credential_store.py

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..storage.database import Database, retry_on_busy

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS broker_credentials (
    api_key TEXT PRIMARY KEY,
    request_token TEXT,
    consumed_request_token TEXT,
    supplied_request_token TEXT,
    access_token TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
)
"""


@dataclass(slots=True, frozen=True)
class AccountCredential:
    api_key: str
    request_token: str | None
    consumed_request_token: str | None
    supplied_request_token: str | None
    access_token: str | None
    created_at: float
    updated_at: float


class CredentialStore:
    """
    One row per broker api_key, overwritten in place.

    A request token is single-use: once it has been exchanged (or given up on) it is
    moved to consumed_request_token, so the same string is never offered to the
    exchange endpoint again.

    A token pasted into the accounts file is also remembered in supplied_request_token,
    which later logins never overwrite, so a stale pasted token is only ever used once.
    """

    def __init__(self, db: Database, *, clock: Callable[[], float] = time.time) -> None:
        self._db = db
        self._clock = clock
        db.executescript(_SCHEMA)
        retry_on_busy(self._migrate)

    def _migrate(self) -> None:
        # Safe migrations: add columns missing from older databases.
        with self._db.transaction() as conn:
            cols = {row["name"] for row in conn.execute("PRAGMA table_info(broker_credentials)").fetchall()}
            if "supplied_request_token" not in cols:
                conn.execute("ALTER TABLE broker_credentials ADD COLUMN supplied_request_token TEXT")
                logger.info("CredentialStore migration: added column supplied_request_token")

    @staticmethod
    def _row_to_credential(row: sqlite3.Row) -> AccountCredential:
        return AccountCredential(
            api_key=str(row["api_key"]),
            request_token=row["request_token"] or None,
            consumed_request_token=row["consumed_request_token"] or None,
            supplied_request_token=row["supplied_request_token"] or None,
            access_token=row["access_token"] or None,
            created_at=float(row["created_at"]),
            updated_at=float(row["updated_at"]),
        )

    def get(self, api_key: str) -> AccountCredential | None:
        def _read() -> AccountCredential | None:
            with self._db.reading() as conn:
                row = conn.execute("SELECT * FROM broker_credentials WHERE api_key = ?", (api_key,)).fetchone()
                return self._row_to_credential(row) if row else None

        return retry_on_busy(_read)

    def _upsert(self, api_key: str, assignments: dict[str, str | None]) -> None:
        now = float(self._clock())
        cols = list(assignments)

        def _write() -> None:
            with self._db.transaction() as conn:
                exists = conn.execute(
                    "SELECT 1 FROM broker_credentials WHERE api_key = ?", (api_key,)
                ).fetchone()
                if exists is None:
                    names = ", ".join(["api_key", *cols, "created_at", "updated_at"])
                    marks = ", ".join("?" for _ in range(len(cols) + 3))
                    conn.execute(
                        f"INSERT INTO broker_credentials({names}) VALUES ({marks})",
                        (api_key, *assignments.values(), now, now),
                    )
                else:
                    sets = ", ".join(f"{c} = ?" for c in cols)
                    conn.execute(
                        f"UPDATE broker_credentials SET {sets}, updated_at = ? WHERE api_key = ?",
                        (*assignments.values(), now, api_key),
                    )

        retry_on_busy(_write)

    def store_request_token(self, api_key: str, request_token: str) -> None:
        if not request_token:
            raise ValueError("request_token is required")
        self._upsert(api_key, {"request_token": request_token})
        logger.debug("Stored request token for api_key=%s", api_key)

    def store_supplied_request_token(self, api_key: str, request_token: str) -> None:
        """Cache an operator-supplied request token and remember that it was used."""
        if not request_token:
            raise ValueError("request_token is required")
        self._upsert(api_key, {"request_token": request_token, "supplied_request_token": request_token})
        logger.debug("Stored supplied request token for api_key=%s", api_key)

    def consume_request_token(self, api_key: str) -> None:
        """Retire the cached request token (no-op if there is none)."""
        current = self.get(api_key)
        if current is None or not current.request_token:
            return
        self._upsert(
            api_key,
            {"request_token": None, "consumed_request_token": current.request_token},
        )

    def store_access_token(self, api_key: str, access_token: str, *, request_token: str | None) -> None:
        """Persist a fresh access token and retire the request token it came from."""
        if not access_token:
            raise ValueError("access_token is required")
        self._upsert(
            api_key,
            {
                "access_token": access_token,
                "request_token": None,
                "consumed_request_token": request_token,
            },
        )
        logger.debug("Stored access token for api_key=%s", api_key)
