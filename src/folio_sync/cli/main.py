# src/folio_sync/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs one of:
- serve (default): scheduler in background threads until SIGINT/SIGTERM,
- status: print next-run / last-run information,
- run TASK: run one task synchronously with ledger bookkeeping,
- login-url: print the manual login URL for every configured account.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from collections.abc import Sequence

from ..broker.login_flow import manual_login_url
from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..core.state import AppState
from ..errors import ConfigurationError
from ..logging_setup import setup_logging
from ..tasks.task_api import get_background_tasks

logger = logging.getLogger(__name__)


def _serve(state: AppState) -> int:
    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, initiating graceful shutdown...", signum)
        stop_main.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    state.scheduler.start()
    try:
        for name, when in sorted(state.scheduler.get_next_run_times().items()):
            logger.info("Next run of %s at %s", name, when.isoformat(timespec="minutes"))
        stop_main.wait()
    finally:
        state.scheduler.stop()
    return 0


def _status(state: AppState) -> int:
    print(json.dumps(get_background_tasks(state), indent=2, default=str))
    return 0


def _run(state: AppState, task_name: str) -> int:
    if task_name not in state.scheduler.task_names():
        logger.error("Unknown task %r. Known tasks: %s", task_name, ", ".join(state.scheduler.task_names()))
        return 2
    return 0 if state.scheduler.run_now(task_name) else 1


def _login_url(state: AppState) -> int:
    try:
        accounts = state.accounts.load()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 2
    for account in accounts:
        print(f"{account.name}: {manual_login_url(state.settings.broker_web_url, account.api_key)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="folio-sync", description="Ledger background sync service")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("serve", help="run the scheduler until interrupted (default)")
    sub.add_parser("status", help="show scheduled and last runs")
    run_p = sub.add_parser("run", help="run a task now, in the foreground")
    run_p.add_argument("task", help='task name, e.g. "Daily Trades Fetch"')
    sub.add_parser("login-url", help="print manual broker login URLs")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)
    state = create_initial_state(settings=settings)

    command = args.command or "serve"
    if command == "status":
        return _status(state)
    if command == "run":
        return _run(state, args.task)
    if command == "login-url":
        return _login_url(state)

    rc = _serve(state)
    logger.info("Bye.")
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
