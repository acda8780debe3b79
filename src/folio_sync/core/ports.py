# src/folio_sync/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the scheduler and the credential manager.

The core depends on Protocols instead of concrete implementations.
This keeps the broker, the login emulator and storage swappable and makes testing easier.
"""

import threading
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..broker.accounts import BrokerAccount
    from ..tasks.task_models import TaskExecution


class BackgroundTask(Protocol):
    """
    A periodic job.

    name is the identity (also the ledger key), schedule is a 5-field cron
    expression in local time. run() must observe cancel at I/O boundaries.
    """

    name: str
    schedule: str
    run_on_startup: bool

    def run(self, cancel: threading.Event) -> None: ...


class ExecutionRepo(Protocol):
    def update_last_run(self, task_name: str) -> None: ...
    def update_last_successful_run(self, task_name: str) -> None: ...
    def should_run_today(self, task_name: str) -> bool: ...
    def get(self, task_name: str) -> TaskExecution | None: ...
    def list_executions(self) -> list[TaskExecution]: ...


class AccountSource(Protocol):
    def load(self) -> list[BrokerAccount]: ...
    def get(self, api_key: str) -> BrokerAccount: ...


class LoginEmulator(Protocol):
    """Runs one complete browser-style login and returns a fresh request token."""
    def login(self, account: BrokerAccount) -> str: ...


class BrokerApi(Protocol):
    def probe_access_token(self, api_key: str, access_token: str) -> bool: ...
    def exchange_request_token(self, api_key: str, api_secret: str, request_token: str) -> str: ...
    def fetch_trades(self, api_key: str, access_token: str) -> list[dict[str, Any]]: ...


class TokenProvider(Protocol):
    def get_valid_access_token(self, api_key: str) -> str: ...
