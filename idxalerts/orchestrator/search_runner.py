"""Execution of a single saved search.

:class:`SearchRunner` performs one run of one search, in this order:

1. **Cutoff** — the search's ``last_run_at`` (``None`` on the first run).
2. **Match** — :meth:`~idxalerts.filters.matcher.CriteriaMatcher.find_new`
   over the window ``(last_run_at, now]``.  A listing dated after ``now``
   is left for the next run, whose cutoff will be ``now``.
3. **Record** — persist ``last_run_at = now`` and
   ``last_match_count = len(matches)`` *unconditionally*, before any
   delivery, so a crash during dispatch never replays the same window.
4. **Stop** when there are no matches.  Nothing is sent and nothing logged.
5. **Resolve** the owning client; a missing or inactive client raises
   :class:`~idxalerts.core.exceptions.ClientUnavailableError`.
6. **Dispatch** through
   :class:`~idxalerts.notifiers.dispatcher.NotificationDispatcher`.
7. **Audit** — append one
   :class:`~idxalerts.core.models.NotificationLogEntry` when a digest went
   out (or nothing was attempted).
8. **Report** — raise
   :class:`~idxalerts.core.exceptions.NotificationError` if any attempted
   channel failed, so the batch counts the run as an error.

Exceptions from any step propagate to the caller; isolation between
searches is the run loop's job.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from idxalerts.core import events
from idxalerts.core.exceptions import ClientUnavailableError, NotificationError
from idxalerts.core.models import (
    DispatchResult,
    Listing,
    NotificationLogEntry,
    NotificationType,
    SavedSearch,
    ensure_utc,
)
from idxalerts.core.ports import SearchStore
from idxalerts.filters.matcher import CriteriaMatcher
from idxalerts.notifiers.dispatcher import NotificationDispatcher
from idxalerts.notifiers.formatter import log_subject

__all__ = ["SearchRunner"]

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SearchRunner:
    """Runs one saved search end to end.

    Args:
        store: Search/client/audit persistence.
        matcher: Finds listings new since the cutoff.
        dispatcher: Delivers digests.
        clock: Returns the current instant when ``run`` is called without
            ``now``.  Defaults to :func:`datetime.now` in UTC.
    """

    def __init__(
        self,
        store: SearchStore,
        matcher: CriteriaMatcher,
        dispatcher: NotificationDispatcher,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._matcher = matcher
        self._dispatcher = dispatcher
        self._clock = clock

    async def run(
        self,
        search: SavedSearch,
        now: datetime | None = None,
        *,
        notification_type: NotificationType = NotificationType.AUTOMATED,
    ) -> int:
        """Execute *search* once and return the number of new listings found.

        Args:
            search: The saved search to run.
            now: Run instant recorded as ``last_run_at`` and ``sent_at``.
            notification_type: Recorded in the audit entry.

        Raises:
            ClientUnavailableError: The owning client is missing or inactive.
                Run metrics have already been recorded.
            NotificationError: An attempted digest was not delivered.  Run
                metrics and, if any digest went out, the audit entry have
                already been recorded.
            Exception: Any collaborator failure propagates unchanged.
        """
        run_at = ensure_utc(now) if now is not None else self._clock()

        listings = await self._matcher.find_new(
            search.criteria, since=search.last_run_at, until=run_at
        )
        await self._store.update_search_run_metrics(search.id, len(listings), run_at)

        if not listings:
            logger.info(
                "Search %s (%s): no new listings",
                search.id,
                search.name,
                extra={"event": events.SEARCH_NO_MATCHES, "search_id": search.id},
            )
            return 0

        client = await self._store.get_client_by_id(search.client_id)
        if client is None:
            raise ClientUnavailableError(search.client_id, "not found")
        if not client.is_active_at(run_at):
            raise ClientUnavailableError(search.client_id, f"status={client.status}")

        result = await self._dispatcher.dispatch(search, client, listings)
        if result.delivered or not result.failed_channels:
            await self._log_dispatch(search, listings, result, notification_type, run_at)
        if result.failed_channels:
            raise NotificationError(
                f"Search {search.id}: {', '.join(result.failed_channels)} digest not delivered"
            )

        logger.info(
            "Search %s (%s): %d new listing(s)",
            search.id,
            search.name,
            len(listings),
            extra={"event": events.SEARCH_RUN_OK, "search_id": search.id},
        )
        return len(listings)

    async def _log_dispatch(
        self,
        search: SavedSearch,
        listings: list[Listing],
        result: DispatchResult,
        notification_type: NotificationType,
        run_at: datetime,
    ) -> None:
        entry = NotificationLogEntry(
            saved_search_id=search.id,
            client_id=search.client_id,
            listing_ids=[listing.mls_number for listing in listings],
            listing_count=len(listings),
            admin_notified=result.shadow_sent,
            email_subject=log_subject(len(listings), search.name),
            notification_type=notification_type,
            sent_at=run_at,
        )
        await self._store.append_notification_log(entry)
        logger.debug(
            "Logged %s notification for search %s (client_sent=%s shadow_sent=%s)",
            notification_type,
            search.id,
            result.client_sent,
            result.shadow_sent,
            extra={"event": events.NOTIFICATION_LOGGED, "search_id": search.id},
        )
