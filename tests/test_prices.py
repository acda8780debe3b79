# tests/test_prices.py

from __future__ import annotations

import logging
import threading

import pytest

from folio_sync.errors import ConfigurationError, TaskError
from folio_sync.tasks.prices import DailyPriceUpdateTask, PriceSyncStep, load_price_steps


def _step(name: str, calls: list[str], *, required: bool = False, fail: bool = False) -> PriceSyncStep:
    def sync() -> None:
        calls.append(name)
        if fail:
            raise RuntimeError(f"{name} unavailable")

    return PriceSyncStep(name=name, sync=sync, required=required)


def test_load_price_steps_marks_first_required() -> None:
    steps = load_price_steps("os:getcwd, time:time")

    assert [s.name for s in steps] == ["os:getcwd", "time:time"]
    assert [s.required for s in steps] == [True, False]


def test_load_price_steps_empty() -> None:
    assert load_price_steps("") == []
    assert load_price_steps(" , ") == []


@pytest.mark.parametrize("ref", ["os", "no_such_module_xyz:run", "os:no_such_function", "os:sep"])
def test_load_price_steps_rejects_bad_refs(ref: str) -> None:
    with pytest.raises(ConfigurationError):
        load_price_steps(ref)


def test_steps_run_in_order() -> None:
    calls: list[str] = []
    task = DailyPriceUpdateTask([_step("primary", calls, required=True), _step("secondary", calls)])

    task.run(threading.Event())
    assert calls == ["primary", "secondary"]


def test_required_step_failure_fails_task() -> None:
    calls: list[str] = []
    task = DailyPriceUpdateTask([_step("primary", calls, required=True, fail=True), _step("secondary", calls)])

    with pytest.raises(TaskError, match="primary"):
        task.run(threading.Event())
    assert calls == ["primary"]


def test_optional_step_failure_is_logged(caplog) -> None:
    calls: list[str] = []
    task = DailyPriceUpdateTask([_step("primary", calls, required=True), _step("secondary", calls, fail=True)])

    with caplog.at_level(logging.WARNING, logger="folio_sync"):
        task.run(threading.Event())

    assert calls == ["primary", "secondary"]
    assert "secondary unavailable" in caplog.text


def test_no_steps_is_a_successful_noop() -> None:
    DailyPriceUpdateTask().run(threading.Event())


def test_cancel_stops_before_next_step() -> None:
    calls: list[str] = []
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(TaskError):
        DailyPriceUpdateTask([_step("primary", calls)]).run(cancel)
    assert calls == []


def test_task_identity() -> None:
    task = DailyPriceUpdateTask(schedule="30 18 * * 1-5")
    assert task.name == "Daily Price Update"
    assert task.schedule == "30 18 * * 1-5"
    assert task.run_on_startup is False
