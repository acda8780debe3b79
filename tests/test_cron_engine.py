# tests/test_cron_engine.py

from __future__ import annotations

import threading
from datetime import datetime, timedelta

import pytest

from folio_sync.tasks.cron_engine import CronEngine, is_valid_expression, next_fire_time

TZ = datetime.now().astimezone().tzinfo


class AwareClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> AwareClock:
    return AwareClock(datetime(2024, 5, 31, 10, 0, tzinfo=TZ))


@pytest.fixture()
def engine(clock: AwareClock):
    eng = CronEngine(clock=clock)
    yield eng
    eng.stop()


def test_expression_validation() -> None:
    assert is_valid_expression("0 16 * * *")
    assert not is_valid_expression("every day at four")
    assert not is_valid_expression("")


def test_next_fire_time_same_day_and_next_day() -> None:
    morning = datetime(2024, 5, 31, 10, 0, tzinfo=TZ)
    evening = datetime(2024, 5, 31, 17, 0, tzinfo=TZ)

    assert next_fire_time("0 16 * * *", morning) == datetime(2024, 5, 31, 16, 0, tzinfo=TZ)
    assert next_fire_time("0 16 * * *", evening) == datetime(2024, 6, 1, 16, 0, tzinfo=TZ)


def test_add_job_rejects_invalid_expression(engine: CronEngine) -> None:
    with pytest.raises(ValueError):
        engine.add_job("not cron", lambda: None)


def test_next_run_is_computed_on_start(engine: CronEngine) -> None:
    entry_id = engine.add_job("0 16 * * *", lambda: None)
    assert engine.entries() == [(entry_id, "0 16 * * *", None)]

    engine.start()
    assert engine.running
    assert engine.entries() == [(entry_id, "0 16 * * *", datetime(2024, 5, 31, 16, 0, tzinfo=TZ))]


def test_run_pending_fires_due_entries_once(engine: CronEngine) -> None:
    fired: list[str] = []
    engine.add_job("0 16 * * *", lambda: fired.append("trades"))
    engine.add_job("0 18 * * *", lambda: fired.append("prices"))
    engine.start()

    assert engine.run_pending(datetime(2024, 5, 31, 15, 59, tzinfo=TZ)) == 0
    assert engine.run_pending(datetime(2024, 5, 31, 16, 0, tzinfo=TZ)) == 1
    assert engine.run_pending(datetime(2024, 5, 31, 16, 0, 30, tzinfo=TZ)) == 0
    assert fired == ["trades"]

    # Next trades fire moved to tomorrow.
    next_runs = sorted(run for _id, _expr, run in engine.entries())
    assert next_runs == [
        datetime(2024, 5, 31, 18, 0, tzinfo=TZ),
        datetime(2024, 6, 1, 16, 0, tzinfo=TZ),
    ]


def test_failing_job_does_not_block_others(engine: CronEngine) -> None:
    fired: list[int] = []

    def broken() -> None:
        raise RuntimeError("boom")

    engine.add_job("0 16 * * *", broken)
    engine.add_job("0 16 * * *", lambda: fired.append(2))
    engine.start()

    assert engine.run_pending(datetime(2024, 5, 31, 16, 0, tzinfo=TZ)) == 2
    assert fired == [2]


def test_stopped_engine_fires_nothing(engine: CronEngine) -> None:
    fired: list[int] = []
    engine.add_job("0 16 * * *", lambda: fired.append(1))
    engine.start()
    engine.stop()

    assert not engine.running
    assert engine.run_pending(datetime(2024, 5, 31, 16, 0, tzinfo=TZ)) == 0
    assert fired == []


def test_loop_thread_fires_when_due(engine: CronEngine, clock: AwareClock) -> None:
    fired = threading.Event()
    engine.add_job("0 16 * * *", fired.set)
    engine.start()

    # Jump past the fire time; adding a job wakes the loop so it re-reads the clock.
    clock.now = clock.now + timedelta(hours=7)
    engine.add_job("0 18 * * *", lambda: None)

    assert fired.wait(5.0)
