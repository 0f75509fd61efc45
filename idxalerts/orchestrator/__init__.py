"""Search execution, batch scheduling, and fault isolation.

Public API
----------
* :func:`~idxalerts.orchestrator.scheduler.run_continuous` — default runtime
  entry-point; runs one batch per minute boundary indefinitely.
* :func:`~idxalerts.orchestrator.runner.run_once` — one scheduled batch; used
  by :func:`run_continuous`, the CLI ``--once`` flag and the cron route.
* :func:`~idxalerts.orchestrator.runner.run_search_once` — forced run of one
  search by id.
* :class:`~idxalerts.orchestrator.run_loop.SchedulerRunLoop` — due-search
  selection with per-search failure isolation.
* :class:`~idxalerts.orchestrator.search_runner.SearchRunner` — one run of
  one search.
"""

from idxalerts.orchestrator.run_loop import BatchSummary, ManualRunResult, SchedulerRunLoop
from idxalerts.orchestrator.runner import (
    build_run_loop,
    expire_clients,
    run_once,
    run_search_once,
)
from idxalerts.orchestrator.scheduler import run_continuous, seconds_until_next_minute
from idxalerts.orchestrator.search_runner import SearchRunner

__all__ = [
    # Continuous scheduler
    "run_continuous",
    "seconds_until_next_minute",
    # Entry-points
    "run_once",
    "run_search_once",
    "expire_clients",
    "build_run_loop",
    # Primitives
    "SchedulerRunLoop",
    "SearchRunner",
    "BatchSummary",
    "ManualRunResult",
]
