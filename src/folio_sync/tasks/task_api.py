# src/folio_sync/tasks/task_api.py

from __future__ import annotations

import logging
from typing import Any

from ..core.state import AppState

logger = logging.getLogger(__name__)


def get_background_tasks(state: AppState) -> dict[str, Any]:
    """
    Status view: scheduler next-run times joined with ledger rows.

    Tasks that never ran report None timestamps and success=False.
    """
    scheduler = state.scheduler
    next_runs = scheduler.get_next_run_times()

    try:
        executions = {e.task_name: e for e in state.ledger.list_executions()}
    except Exception:
        logger.exception("Failed to fetch task executions")
        return {"error": "Failed to fetch task executions"}

    tasks: list[dict[str, Any]] = []
    for task_name in scheduler.task_names():
        execution = executions.get(task_name)
        tasks.append(
            {
                "task_name": task_name,
                "next_run": next_runs.get(task_name),
                "last_run": execution.last_run_dt() if execution else None,
                "last_successful_run": execution.last_successful_run_dt() if execution else None,
                "success": bool(execution and execution.success),
            }
        )

    return {
        "status": "running" if scheduler.running else "stopped",
        "tasks": tasks,
    }


def run_task_now(state: AppState, task_name: str) -> dict[str, Any]:
    """Manual trigger: start the task in the background through the normal bookkeeping."""
    try:
        state.scheduler.trigger(task_name)
    except KeyError:
        return {"success": False, "message": f"Unknown task: {task_name}"}
    except RuntimeError as exc:
        return {"success": False, "message": str(exc)}

    logger.info("Manual run of %s started", task_name)
    return {"success": True, "message": f"{task_name} started"}
