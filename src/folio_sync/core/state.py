# src/folio_sync/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..broker.accounts import AccountsFile
from ..broker.client import BrokerClient
from ..broker.credential_store import CredentialStore
from ..broker.token_manager import TokenManager
from ..config import Settings
from ..storage.database import Database
from ..tasks.execution_ledger import ExecutionLedger
from ..tasks.task_scheduler import Scheduler


@dataclass
class AppState:
    """Everything the CLI and the shutdown hook need, wired once in cli/bootstrap.py."""

    settings: Settings
    db: Database
    ledger: ExecutionLedger
    credentials: CredentialStore
    accounts: AccountsFile
    broker: BrokerClient
    token_manager: TokenManager
    scheduler: Scheduler
