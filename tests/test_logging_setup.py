# tests/test_logging_setup.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from folio_sync.logging_setup import setup_logging

pytestmark = pytest.mark.usefixtures("restore_root_logging")


def _flush() -> None:
    for h in logging.getLogger().handlers:
        h.flush()


def test_log_file_gets_debug_records(tmp_path: Path) -> None:
    log_file = setup_logging(log_dir=tmp_path, console_level=logging.WARNING)

    logging.getLogger("folio_sync.tests").debug("ledger row written for %s", "Daily Trades Fetch")
    _flush()

    assert log_file == tmp_path / "folio.log"
    assert "ledger row written for Daily Trades Fetch" in log_file.read_text("utf-8")


def test_tokens_are_redacted(tmp_path: Path) -> None:
    log_file = setup_logging(log_dir=tmp_path)

    logging.getLogger("folio_sync.tests").info(
        "redirected to %s", "https://ledger.example.com/cb?status=success&request_token=RT-abc123xyz"
    )
    _flush()

    text = log_file.read_text("utf-8")
    assert "request_token=RT-a..." in text
    assert "RT-abc123xyz" not in text


def test_third_party_info_is_muted(tmp_path: Path) -> None:
    setup_logging(log_dir=tmp_path)
    assert logging.getLogger("httpx").getEffectiveLevel() == logging.WARNING
