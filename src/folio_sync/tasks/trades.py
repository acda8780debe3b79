# src/folio_sync/tasks/trades.py

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from ..core.ports import AccountSource, BrokerApi, TokenProvider
from ..errors import AuthenticationError, ConfigurationError, FolioSyncError, TaskError

logger = logging.getLogger(__name__)

TRADE_TS_FORMAT = "%Y-%m-%d %H:%M:%S"
_PRICE_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True, slots=True)
class Trade:
    trade_id: str
    order_id: str
    tradingsymbol: str
    exchange: str
    transaction_type: str
    product: str
    average_price: Decimal
    quantity: int
    fill_timestamp: datetime

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> Trade:
        """Raises ValueError if a field is missing or malformed."""
        ts_raw = raw.get("fill_timestamp") or raw.get("exchange_timestamp")
        if not ts_raw:
            raise ValueError("trade has no fill/exchange timestamp")
        try:
            price = Decimal(str(raw["average_price"]))
        except (KeyError, InvalidOperation) as exc:
            raise ValueError(f"bad average_price: {raw.get('average_price')!r}") from exc

        symbol = str(raw.get("tradingsymbol") or "").strip()
        if not symbol:
            raise ValueError("trade has no tradingsymbol")

        return cls(
            trade_id=str(raw.get("trade_id") or ""),
            order_id=str(raw.get("order_id") or ""),
            tradingsymbol=symbol,
            exchange=str(raw.get("exchange") or ""),
            transaction_type=str(raw.get("transaction_type") or "").upper(),
            product=str(raw.get("product") or ""),
            average_price=price,
            quantity=int(raw.get("quantity") or 0),
            fill_timestamp=datetime.strptime(str(ts_raw), TRADE_TS_FORMAT),
        )


def _format_price(price: Decimal) -> str:
    return format(price.quantize(_PRICE_QUANTUM).normalize(), "f")


def format_ledger_entry(trade: Trade, *, cash_account: str) -> str | None:
    """Ledger posting for one trade, or None for unknown transaction types."""
    quantity = trade.quantity
    if trade.transaction_type == "BUY":
        description = f"Purchased {quantity} Shares of {trade.tradingsymbol}"
    elif trade.transaction_type == "SELL":
        description = f"Sold {quantity} Shares of {trade.tradingsymbol}"
        quantity = -quantity
    else:
        logger.warning("Unknown transaction type: %s", trade.transaction_type)
        return None

    return (
        f"{trade.fill_timestamp:%Y/%m/%d} {description}\n"
        f"    Assets:Equity:Stocks:{trade.tradingsymbol}\t\t\t"
        f'{quantity} "{trade.tradingsymbol}" @ {_format_price(trade.average_price)} INR\n'
        f"    {cash_account}"
    )


def render_trade_section(
    account_name: str,
    trades: Iterable[Trade],
    *,
    cash_account: str,
    now: datetime,
) -> str:
    """Commented ledger entries ready to append, or "" when nothing is postable."""
    clock_time = now.strftime("%I:%M %p").lstrip("0")
    entries: list[str] = []
    for trade in trades:
        entry = format_ledger_entry(trade, cash_account=cash_account)
        if entry:
            entries.append(f"; Auto added on {now:%Y-%m-%d} {clock_time} - {account_name}\n{entry}")
    if not entries:
        return ""
    return "\n" + "\n\n".join(entries) + "\n"


def append_to_journal(journal_path: Path, section: str) -> None:
    if not journal_path.exists():
        raise TaskError(f"journal file {journal_path} does not exist")
    try:
        with journal_path.open("a", encoding="utf-8") as fh:
            fh.write(section)
    except OSError as exc:
        raise TaskError(f"failed to write journal file {journal_path}: {exc}") from exc


def parse_trades(raw_trades: Iterable[dict[str, Any]]) -> list[Trade]:
    out: list[Trade] = []
    for raw in raw_trades:
        try:
            out.append(Trade.from_api(raw))
        except ValueError as exc:
            logger.warning("Skipping malformed trade %s: %s", raw.get("trade_id"), exc)
    return out


class DailyTradesTask:
    """Fetch today's fills for every broker account and append them to the journal."""

    name = "Daily Trades Fetch"
    run_on_startup = True

    def __init__(
        self,
        *,
        accounts: AccountSource,
        tokens: TokenProvider,
        broker: BrokerApi,
        journal_path: str | Path,
        schedule: str = "0 16 * * *",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.schedule = schedule
        self._accounts = accounts
        self._tokens = tokens
        self._broker = broker
        self._journal_path = Path(journal_path)
        self._clock = clock

    def run(self, cancel: threading.Event) -> None:
        logger.info("Starting daily trades fetch for all accounts")
        accounts = self._accounts.load()
        if not accounts:
            raise ConfigurationError("no broker accounts configured")

        for account in accounts:
            if cancel.is_set():
                raise TaskError("trades fetch cancelled")

            logger.info("Processing account: %s", account.name)
            try:
                access_token = self._tokens.get_valid_access_token(account.api_key)
            except FolioSyncError as exc:
                logger.warning("Failed to get a valid access token for account %s: %s", account.name, exc)
                continue

            if cancel.is_set():
                raise TaskError("trades fetch cancelled")

            try:
                raw_trades = self._broker.fetch_trades(account.api_key, access_token)
            except (TaskError, AuthenticationError) as exc:
                logger.warning("Failed to fetch daily trades for account %s: %s", account.name, exc)
                continue

            trades = parse_trades(raw_trades)
            logger.info("Found %d trades for account %s", len(trades), account.name)

            section = render_trade_section(
                account.name,
                trades,
                cash_account=account.ledger_account,
                now=self._clock(),
            )
            if not section:
                logger.info("No valid ledger entries generated for account %s", account.name)
                continue

            append_to_journal(self._journal_path, section)
            logger.info("Added %d trade entries for account %s to %s", len(trades), account.name, self._journal_path)
