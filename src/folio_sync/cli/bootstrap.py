# src/folio_sync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires storage, broker client, login emulator, token manager and tasks into AppState,
- creates the one Scheduler instance for the process.
"""

from __future__ import annotations

import logging

from ..broker.accounts import AccountsFile
from ..broker.client import BrokerClient
from ..broker.credential_store import CredentialStore
from ..broker.login_flow import LoginFlowEmulator
from ..broker.token_manager import TokenManager
from ..config import Settings, get_settings
from ..core.ports import BackgroundTask
from ..core.state import AppState
from ..storage.database import Database
from ..tasks.execution_ledger import ExecutionLedger
from ..tasks.prices import DailyPriceUpdateTask, load_price_steps
from ..tasks.task_scheduler import Scheduler
from ..tasks.trades import DailyTradesTask

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.accounts_path.parent.mkdir(parents=True, exist_ok=True)


def build_tasks(
    settings: Settings,
    *,
    accounts: AccountsFile,
    broker: BrokerClient,
    token_manager: TokenManager,
) -> list[BackgroundTask]:
    return [
        DailyTradesTask(
            accounts=accounts,
            tokens=token_manager,
            broker=broker,
            journal_path=settings.journal_path,
            schedule=settings.trades_schedule,
        ),
        DailyPriceUpdateTask(
            load_price_steps(settings.price_sync_steps),
            schedule=settings.prices_schedule,
        ),
    ]


def create_initial_state(*, settings: Settings | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    db = Database(settings.db_path, busy_timeout=settings.db_busy_timeout_seconds)
    ledger = ExecutionLedger(db)
    credentials = CredentialStore(db)
    accounts = AccountsFile(settings.accounts_path)

    broker = BrokerClient(api_url=settings.broker_api_url, timeout_seconds=settings.http_timeout_seconds)
    emulator = LoginFlowEmulator(web_url=settings.broker_web_url, timeout_seconds=settings.http_timeout_seconds)
    if not settings.login_emulation_enabled:
        logger.info("Login emulation disabled; expired tokens need a manual login.")

    token_manager = TokenManager(
        accounts=accounts,
        store=credentials,
        broker=broker,
        emulator=emulator,
        web_url=settings.broker_web_url,
        max_attempts=settings.token_max_attempts,
        emulation_enabled=settings.login_emulation_enabled,
    )

    tasks = build_tasks(settings, accounts=accounts, broker=broker, token_manager=token_manager)
    scheduler = Scheduler(tasks)
    scheduler.initialize(db, ledger=ledger)

    return AppState(
        settings=settings,
        db=db,
        ledger=ledger,
        credentials=credentials,
        accounts=accounts,
        broker=broker,
        token_manager=token_manager,
        scheduler=scheduler,
    )
