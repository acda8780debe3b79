# tests/test_trades.py

from __future__ import annotations

import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

from folio_sync.errors import ConfigurationError, CredentialError, TaskError
from folio_sync.tasks.trades import (
    DailyTradesTask,
    Trade,
    format_ledger_entry,
    parse_trades,
    render_trade_section,
)

from .fakes import FakeAccounts, FakeBroker, make_account

NOW = datetime(2024, 5, 31, 16, 5)


def raw_trade(**overrides) -> dict:
    trade = {
        "trade_id": "T1",
        "order_id": "O1",
        "exchange": "NSE",
        "tradingsymbol": "INFY",
        "transaction_type": "BUY",
        "product": "CNC",
        "average_price": 1500.5,
        "quantity": 10,
        "fill_timestamp": "2024-05-31 10:15:00",
    }
    trade.update(overrides)
    return trade


class FakeTokens:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()

    def get_valid_access_token(self, api_key: str) -> str:
        if api_key in self.failing:
            raise CredentialError(f"gave up on {api_key}")
        return f"at-{api_key}"


def test_trade_from_api() -> None:
    trade = Trade.from_api(raw_trade())
    assert trade.tradingsymbol == "INFY"
    assert trade.average_price == Decimal("1500.5")
    assert trade.fill_timestamp == datetime(2024, 5, 31, 10, 15)


def test_trade_falls_back_to_exchange_timestamp() -> None:
    trade = Trade.from_api(raw_trade(fill_timestamp=None, exchange_timestamp="2024-05-31 10:16:00"))
    assert trade.fill_timestamp == datetime(2024, 5, 31, 10, 16)


def test_buy_entry() -> None:
    entry = format_ledger_entry(Trade.from_api(raw_trade()), cash_account="Assets:Checking:Broker")
    assert entry == (
        "2024/05/31 Purchased 10 Shares of INFY\n"
        '    Assets:Equity:Stocks:INFY\t\t\t10 "INFY" @ 1500.5 INR\n'
        "    Assets:Checking:Broker"
    )


def test_sell_entry_has_negative_quantity() -> None:
    trade = Trade.from_api(raw_trade(transaction_type="SELL", average_price="1500", quantity=3))
    entry = format_ledger_entry(trade, cash_account="Assets:Bank")

    assert entry is not None
    assert entry.startswith("2024/05/31 Sold 3 Shares of INFY\n")
    assert '-3 "INFY" @ 1500 INR' in entry
    assert entry.endswith("    Assets:Bank")


def test_unknown_transaction_type_is_skipped() -> None:
    trade = Trade.from_api(raw_trade(transaction_type="SHORT"))
    assert format_ledger_entry(trade, cash_account="Assets:Bank") is None


def test_render_section_header_and_spacing() -> None:
    trades = parse_trades([raw_trade(), raw_trade(trade_id="T2", tradingsymbol="TCS")])
    section = render_trade_section("Primary Account", trades, cash_account="Assets:Bank", now=NOW)

    assert section.startswith("\n; Auto added on 2024-05-31 4:05 PM - Primary Account\n2024/05/31 Purchased")
    assert section.endswith("    Assets:Bank\n")
    assert section.count("; Auto added on") == 2
    assert "Assets:Bank\n\n; Auto added" in section


def test_render_section_empty_when_nothing_postable() -> None:
    trades = parse_trades([raw_trade(transaction_type="SHORT")])
    assert render_trade_section("Primary Account", trades, cash_account="Assets:Bank", now=NOW) == ""


def test_parse_trades_skips_malformed() -> None:
    trades = parse_trades(
        [
            raw_trade(),
            raw_trade(trade_id="bad-price", average_price="n/a"),
            raw_trade(trade_id="bad-ts", fill_timestamp="yesterday"),
            raw_trade(trade_id="no-ts", fill_timestamp=None),
        ]
    )
    assert [t.trade_id for t in trades] == ["T1"]


# ---- task ----


@pytest.fixture()
def journal(tmp_path: Path) -> Path:
    path = tmp_path / "main.ledger"
    path.write_text("; journal\n", "utf-8")
    return path


def _task(accounts, tokens, broker, journal_path) -> DailyTradesTask:
    return DailyTradesTask(
        accounts=accounts,
        tokens=tokens,
        broker=broker,
        journal_path=journal_path,
        clock=lambda: NOW,
    )


def test_task_appends_trades_for_each_account(journal: Path) -> None:
    accounts = FakeAccounts([make_account(), make_account(name="Second", api_key="key-2", ledger_account="Assets:Other")])
    broker = FakeBroker(trades={"key-1": [raw_trade()], "key-2": [raw_trade(tradingsymbol="TCS")]})

    _task(accounts, FakeTokens(), broker, journal).run(threading.Event())

    text = journal.read_text("utf-8")
    assert text.startswith("; journal\n\n; Auto added on 2024-05-31 4:05 PM - Primary Account\n")
    assert "- Second\n2024/05/31 Purchased 10 Shares of TCS" in text
    assert "    Assets:Other\n" in text
    assert broker.fetches == [("key-1", "at-key-1"), ("key-2", "at-key-2")]


def test_task_skips_account_without_token(journal: Path) -> None:
    accounts = FakeAccounts([make_account(), make_account(name="Second", api_key="key-2")])
    broker = FakeBroker(trades={"key-2": [raw_trade()]})

    _task(accounts, FakeTokens(failing={"key-1"}), broker, journal).run(threading.Event())

    assert broker.fetches == [("key-2", "at-key-2")]
    assert "- Second" in journal.read_text("utf-8")


def test_task_without_trades_leaves_journal_alone(journal: Path) -> None:
    _task(FakeAccounts([make_account()]), FakeTokens(), FakeBroker(), journal).run(threading.Event())
    assert journal.read_text("utf-8") == "; journal\n"


def test_task_without_accounts_fails(journal: Path) -> None:
    with pytest.raises(ConfigurationError):
        _task(FakeAccounts([]), FakeTokens(), FakeBroker(), journal).run(threading.Event())


def test_task_missing_journal_fails(tmp_path: Path) -> None:
    broker = FakeBroker(trades={"key-1": [raw_trade()]})
    with pytest.raises(TaskError):
        _task(FakeAccounts([make_account()]), FakeTokens(), broker, tmp_path / "missing.ledger").run(threading.Event())


def test_task_observes_cancel(journal: Path) -> None:
    cancel = threading.Event()
    cancel.set()
    broker = FakeBroker()

    with pytest.raises(TaskError):
        _task(FakeAccounts([make_account()]), FakeTokens(), broker, journal).run(cancel)
    assert broker.fetches == []
