# src/folio_sync/broker/accounts.py

"""
Broker account configuration (accounts.yaml).

The file holds static secrets, so it is created with 0600 permissions and is
re-read on every lookup: edits (e.g. a pasted request_token after a manual
login) take effect on the next task run without a restart.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

REQUIRED_SECRETS = ("api_key", "api_secret", "user_id", "password", "totp_secret")

DEFAULT_LEDGER_ACCOUNT = "Assets:Checking:Broker"


@dataclass(frozen=True, slots=True)
class BrokerAccount:
    name: str
    api_key: str
    api_secret: str
    user_id: str
    password: str
    totp_secret: str
    request_token: str | None = None
    ledger_account: str = DEFAULT_LEDGER_ACCOUNT

    def missing_secrets(self) -> list[str]:
        return [f for f in REQUIRED_SECRETS if not str(getattr(self, f) or "").strip()]

    def require_secrets(self) -> None:
        missing = self.missing_secrets()
        if missing:
            raise ConfigurationError(
                f"Broker account {self.name!r} is missing: {', '.join(missing)}"
            )

    def __repr__(self) -> str:
        # Never leak secrets into logs / tracebacks.
        return f"BrokerAccount(name={self.name!r}, api_key={self.api_key!r})"


_TEMPLATE: dict[str, Any] = {
    "accounts": [
        {
            "name": "Primary Account",
            "api_key": "your_api_key_here",
            "api_secret": "your_api_secret_here",
            "user_id": "your_user_id_here",
            "password": "your_password_here",
            "totp_secret": "your_totp_secret_here",
            "ledger_account": DEFAULT_LEDGER_ACCOUNT,
        }
    ]
}


def _account_from_mapping(raw: Any, index: int) -> BrokerAccount:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"accounts[{index}] must be a mapping")

    known = {f.name for f in fields(BrokerAccount)}
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning("accounts[%d]: ignoring unknown keys %s", index, unknown)

    def _s(key: str) -> str:
        v = raw.get(key)
        return "" if v is None else str(v).strip()

    request_token = _s("request_token") or None
    return BrokerAccount(
        name=_s("name") or f"Account {index + 1}",
        api_key=_s("api_key"),
        api_secret=_s("api_secret"),
        user_id=_s("user_id"),
        password=_s("password"),
        totp_secret=_s("totp_secret"),
        request_token=request_token,
        ledger_account=_s("ledger_account") or DEFAULT_LEDGER_ACCOUNT,
    )


def write_template(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(yaml.safe_dump(_TEMPLATE, sort_keys=False), "utf-8")
    os.chmod(tmp, 0o600)
    os.replace(tmp, path)


def load_accounts(path: str | Path) -> list[BrokerAccount]:
    """
    Parse accounts.yaml.

    A missing file is replaced by a template and reported as ConfigurationError,
    so the operator knows where to put the credentials.
    """
    path = Path(path)
    if not path.exists():
        write_template(path)
        logger.info("Created template broker accounts file at %s", path)
        raise ConfigurationError(
            f"Broker accounts file created at {path}; please fill in your credentials"
        )

    try:
        data = yaml.safe_load(path.read_text("utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Failed to read broker accounts file {path}: {exc}") from exc

    raw_accounts = data.get("accounts") if isinstance(data, dict) else None
    if raw_accounts is None:
        return []
    if not isinstance(raw_accounts, list):
        raise ConfigurationError(f"'accounts' in {path} must be a list")

    return [_account_from_mapping(raw, i) for i, raw in enumerate(raw_accounts)]


class AccountsFile:
    """Lazy view over accounts.yaml, keyed by api_key."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def load(self) -> list[BrokerAccount]:
        return load_accounts(self._path)

    def get(self, api_key: str) -> BrokerAccount:
        if not api_key:
            raise ConfigurationError("api_key is required")
        for account in self.load():
            if account.api_key == api_key:
                return account
        raise ConfigurationError(f"No broker account configured for api_key {api_key!r}")
