# tests/test_bootstrap.py

from __future__ import annotations

from pathlib import Path

import pytest

from folio_sync.cli import main as cli_main
from folio_sync.cli.bootstrap import create_initial_state
from folio_sync.config import Settings

pytestmark = pytest.mark.usefixtures("restore_root_logging")


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("FOLIO_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("FOLIO_TRADES_SCHEDULE", "15 16 * * 1-5")
    monkeypatch.setenv("FOLIO_LOGIN_EMULATION", "off")
    monkeypatch.setenv("FOLIO_TOKEN_MAX_ATTEMPTS", "not-a-number")
    monkeypatch.delenv("FOLIO_DB_PATH", raising=False)
    monkeypatch.delenv("FOLIO_ACCOUNTS_PATH", raising=False)
    monkeypatch.delenv("FOLIO_PRICE_SYNC_STEPS", raising=False)
    return Settings.from_env()


def test_settings_from_env(settings: Settings, tmp_path: Path) -> None:
    assert settings.db_path == tmp_path / "data" / "folio.sqlite3"
    assert settings.accounts_path == tmp_path / "data" / "accounts.yaml"
    assert settings.trades_schedule == "15 16 * * 1-5"
    assert settings.login_emulation_enabled is False
    assert settings.token_max_attempts == 3


def test_initial_state_registers_both_tasks(settings: Settings) -> None:
    state = create_initial_state(settings=settings)

    assert state.scheduler.task_names() == ["Daily Trades Fetch", "Daily Price Update"]
    assert settings.db_path.exists()
    assert not state.scheduler.running


def test_status_command_prints_tasks(settings: Settings, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setattr(cli_main, "get_settings", lambda: settings)

    assert cli_main.main(["status"]) == 0
    out = capsys.readouterr().out
    assert '"status": "stopped"' in out
    assert "Daily Trades Fetch" in out


def test_login_url_command_creates_template(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_main, "get_settings", lambda: settings)

    # No accounts file yet: a template is written and the command fails.
    assert cli_main.main(["login-url"]) == 2
    assert settings.accounts_path.exists()


def test_run_unknown_task(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_main, "get_settings", lambda: settings)
    assert cli_main.main(["run", "Nope"]) == 2
