# src/folio_sync/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time: broker credentials live in the accounts file,
  which is read lazily by folio_sync.broker.accounts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "FOLIO"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path
    db_busy_timeout_seconds: float
    accounts_path: Path
    journal_path: Path

    # ---- Broker ----
    broker_web_url: str
    broker_api_url: str
    http_timeout_seconds: float
    login_emulation_enabled: bool
    token_max_attempts: int

    # ---- Schedules (cron, local time) ----
    trades_schedule: str
    prices_schedule: str
    # "module:function,..." run by the price update task; the first one is required.
    price_sync_steps: str

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "folio-sync") or "folio-sync"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/folio"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "folio.sqlite3")
        accounts_path = _env_path(_k("ACCOUNTS_PATH"), data_dir / "accounts.yaml")
        journal_path = _env_path(_k("JOURNAL_PATH"), data_dir / "main.ledger")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            db_busy_timeout_seconds=_env_float(_k("DB_BUSY_TIMEOUT_SECONDS"), 5.0),
            accounts_path=accounts_path,
            journal_path=journal_path,
            broker_web_url=_env(_k("BROKER_WEB_URL"), "https://kite.zerodha.com").rstrip("/"),
            broker_api_url=_env(_k("BROKER_API_URL"), "https://api.kite.trade").rstrip("/"),
            http_timeout_seconds=_env_float(_k("HTTP_TIMEOUT_SECONDS"), 30.0),
            login_emulation_enabled=_env_bool(_k("LOGIN_EMULATION"), True),
            token_max_attempts=max(1, _env_int(_k("TOKEN_MAX_ATTEMPTS"), 3)),
            trades_schedule=_env(_k("TRADES_SCHEDULE"), "0 16 * * *"),
            prices_schedule=_env(_k("PRICES_SCHEDULE"), "0 18 * * *"),
            price_sync_steps=_env(_k("PRICE_SYNC_STEPS"), ""),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
