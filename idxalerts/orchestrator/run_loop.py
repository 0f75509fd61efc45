"""Batch execution of due saved searches.

:class:`SchedulerRunLoop` is invoked once per trigger tick.  It loads every
active search, keeps the ones :func:`~idxalerts.core.schedule.is_due` at the
tick instant, and runs each through
:class:`~idxalerts.orchestrator.search_runner.SearchRunner`.

Failure isolation
-----------------
Searches are dispatched with ``asyncio.gather(..., return_exceptions=True)``
behind an :class:`asyncio.Semaphore` (``max_concurrency``; ``1`` runs them
one at a time).  A failing search is logged and counted; the rest of the
batch continues.  Only a failure to *enumerate* searches aborts the batch,
surfacing as :class:`~idxalerts.core.exceptions.SchedulerError`.

Typical usage::

    loop = SchedulerRunLoop(search_repo, runner, tz=settings.tzinfo)
    summary = await loop.execute_due_searches()
    print(summary.executed, summary.matches, summary.errors)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo

from idxalerts.core import events
from idxalerts.core.exceptions import ClientUnavailableError, SchedulerError
from idxalerts.core.models import NotificationType, SavedSearch
from idxalerts.core.ports import SearchStore
from idxalerts.core.schedule import is_due
from idxalerts.orchestrator.search_runner import SearchRunner

__all__ = ["BatchSummary", "ManualRunResult", "SchedulerRunLoop", "SEARCH_NOT_FOUND"]

logger = logging.getLogger(__name__)

SEARCH_NOT_FOUND: str = "Search not found"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchSummary:
    """Outcome of one scheduled batch.

    Attributes:
        executed: Due searches attempted.
        matches: Sum of new-listing counts over successful runs.
        errors: Attempted searches that raised.
    """

    executed: int = 0
    matches: int = 0
    errors: int = 0

    @property
    def succeeded(self) -> int:
        return self.executed - self.errors


@dataclass(frozen=True)
class ManualRunResult:
    """Outcome of an operator-forced run of one search."""

    success: bool
    matches: int = 0
    error: str | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Run loop
# ---------------------------------------------------------------------------


class SchedulerRunLoop:
    """Selects due searches and runs them with per-search fault isolation.

    Args:
        store: Search persistence used for discovery and manual lookups.
        runner: Executes one search.
        tz: Local zone for schedule evaluation.  Naive ``now`` values are
            taken to be in this zone.
        max_concurrency: Searches run at the same time within one batch.
        clock: Source of the current instant when ``now`` is omitted.
    """

    def __init__(
        self,
        store: SearchStore,
        runner: SearchRunner,
        *,
        tz: tzinfo | None = None,
        max_concurrency: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency!r}.")
        self._store = store
        self._runner = runner
        self._tz = tz
        self._max_concurrency = max_concurrency
        self._clock = clock

    def _instant(self, now: datetime | None) -> datetime:
        if now is None:
            return self._clock()
        if now.tzinfo is None:
            return now.replace(tzinfo=self._tz or UTC)
        return now

    # ------------------------------------------------------------------
    # Scheduled batch
    # ------------------------------------------------------------------

    async def execute_due_searches(self, now: datetime | None = None) -> BatchSummary:
        """Run every search that is due at *now*.

        Returns:
            A :class:`BatchSummary`.  Individual search failures are counted
            in ``errors`` and never raised.

        Raises:
            SchedulerError: If active searches cannot be loaded.
        """
        instant = self._instant(now)
        logger.info(
            "Batch starting at %s",
            instant.isoformat(),
            extra={"event": events.BATCH_START},
        )

        try:
            searches = await self._store.get_active_searches()
        except Exception as exc:
            logger.error(
                "Could not load active searches: %s",
                exc,
                extra={"event": events.BATCH_ABORT},
            )
            raise SchedulerError(f"Could not load active searches: {exc}") from exc

        due = [search for search in searches if is_due(search, instant, self._tz)]
        if len(due) < len(searches):
            logger.debug(
                "%d active search(es) not due at %s",
                len(searches) - len(due),
                instant.isoformat(),
            )
        for search in due:
            logger.debug(
                "Search %s (%s) is due",
                search.id,
                search.notification_frequency,
                extra={"event": events.SEARCH_DUE, "search_id": search.id},
            )

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _guarded(search: SavedSearch) -> int:
            async with semaphore:
                return await self._runner.run(search, instant)

        results = await asyncio.gather(*(_guarded(s) for s in due), return_exceptions=True)

        matches = 0
        errors = 0
        for search, result in zip(due, results, strict=True):
            if isinstance(result, ClientUnavailableError):
                errors += 1
                logger.warning(
                    "Search %s skipped: %s",
                    search.id,
                    result,
                    extra={"event": events.SEARCH_CLIENT_UNAVAILABLE, "search_id": search.id},
                )
            elif isinstance(result, BaseException):
                errors += 1
                logger.error(
                    "Search %s failed: %s",
                    search.id,
                    result,
                    exc_info=result,
                    extra={"event": events.SEARCH_RUN_ERROR, "search_id": search.id},
                )
            else:
                matches += result

        summary = BatchSummary(executed=len(due), matches=matches, errors=errors)
        logger.info(
            "Batch summary: active=%d due=%d executed=%d matches=%d errors=%d",
            len(searches),
            len(due),
            summary.executed,
            summary.matches,
            summary.errors,
            extra={"event": events.BATCH_COMPLETE},
        )
        return summary

    # ------------------------------------------------------------------
    # Manual run
    # ------------------------------------------------------------------

    async def execute_search_by_id(
        self,
        search_id: str,
        now: datetime | None = None,
    ) -> ManualRunResult:
        """Run one search immediately, ignoring its schedule and active flag.

        Never raises; every failure is reported in the result.
        """
        instant = self._instant(now)
        try:
            search = await self._store.get_search_by_id(search_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Manual run of %s: lookup failed: %s", search_id, exc, exc_info=True)
            return ManualRunResult(success=False, error=str(exc))

        if search is None:
            logger.warning("Manual run of %s: %s", search_id, SEARCH_NOT_FOUND)
            return ManualRunResult(success=False, error=SEARCH_NOT_FOUND)

        try:
            matches = await self._runner.run(
                search, instant, notification_type=NotificationType.MANUAL
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Manual run of %s failed: %s",
                search_id,
                exc,
                exc_info=True,
                extra={"event": events.SEARCH_RUN_ERROR, "search_id": search_id},
            )
            return ManualRunResult(success=False, error=str(exc))

        logger.info("Manual run of %s: %d new listing(s)", search_id, matches)
        return ManualRunResult(success=True, matches=matches)
