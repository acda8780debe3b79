# src/folio_sync/tasks/prices.py

from __future__ import annotations

import importlib
import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ..errors import ConfigurationError, TaskError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PriceSyncStep:
    name: str
    sync: Callable[[], None]
    required: bool = False


def load_price_steps(refs: str) -> list[PriceSyncStep]:
    """
    Build steps from "pkg.module:func,pkg.other:func2".

    The first step is required (its failure fails the task); later ones are best effort.
    """
    steps: list[PriceSyncStep] = []
    for i, ref in enumerate(p.strip() for p in refs.split(",") if p.strip()):
        module_name, _, attr = ref.partition(":")
        if not module_name or not attr:
            raise ConfigurationError(f"price sync step must look like 'module:function', got {ref!r}")
        try:
            func = getattr(importlib.import_module(module_name), attr)
        except (ImportError, AttributeError) as exc:
            raise ConfigurationError(f"cannot load price sync step {ref!r}: {exc}") from exc
        if not callable(func):
            raise ConfigurationError(f"price sync step {ref!r} is not callable")
        steps.append(PriceSyncStep(name=ref, sync=func, required=(i == 0)))
    return steps


class DailyPriceUpdateTask:
    """Run the configured price sync steps in order (after market hours)."""

    name = "Daily Price Update"
    run_on_startup = False

    def __init__(self, steps: Sequence[PriceSyncStep] = (), *, schedule: str = "0 18 * * *") -> None:
        self.schedule = schedule
        self._steps = list(steps)

    def run(self, cancel: threading.Event) -> None:
        logger.info("Starting daily price update")
        if not self._steps:
            logger.info("No price sync steps configured; nothing to update")
            return

        for step in self._steps:
            if cancel.is_set():
                raise TaskError("price update cancelled")
            try:
                step.sync()
            except Exception as exc:
                if step.required:
                    raise TaskError(f"price sync step {step.name} failed: {exc}") from exc
                # Secondary sources must not fail the whole update.
                logger.warning("Price sync step %s failed: %s", step.name, exc)

        logger.info("Daily price update completed successfully")
