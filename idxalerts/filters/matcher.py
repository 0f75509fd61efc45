"""Criteria matcher for saved searches.

Provides :class:`CriteriaMatcher`, which answers two questions for a saved
search:

* **matches** — does a single listing satisfy the criteria *and* the IDX
  eligibility rules (``status == Active`` and ``permit_idx``)?
* **find_new** — which listings are new since the search's last run?

``find_new`` delegates the heavy lifting to a
:class:`~idxalerts.core.ports.ListingSource` and then re-applies every rule
(eligibility, criteria, strict cutoff, newest-first order, result cap) to
whatever the source returns.  The guarantees therefore hold for any source,
including ones that can only pre-filter approximately.

Typical usage::

    from idxalerts.filters.matcher import CriteriaMatcher

    matcher = CriteriaMatcher(listing_repo)
    fresh = await matcher.find_new(search.criteria, since=search.last_run_at)
"""

from __future__ import annotations

import logging
from datetime import datetime

from idxalerts.core.criteria import SearchCriteria
from idxalerts.core.models import Listing, ensure_utc
from idxalerts.core.ports import ListingSource
from idxalerts.core.settings import MAX_SEARCH_RESULTS

__all__ = ["CriteriaMatcher"]

logger = logging.getLogger(__name__)


class CriteriaMatcher:
    """Evaluates listings against saved-search criteria.

    Stateless apart from its collaborators; safe to share between
    concurrently running searches.

    Args:
        source: Listing source queried by :meth:`find_new`.
        cap: Maximum listings returned per call.  Values above
            :data:`~idxalerts.core.settings.MAX_SEARCH_RESULTS` are clamped.
    """

    def __init__(self, source: ListingSource, *, cap: int = MAX_SEARCH_RESULTS) -> None:
        if cap < 1:
            raise ValueError(f"cap must be at least 1, got {cap!r}.")
        self._source = source
        self._cap = min(cap, MAX_SEARCH_RESULTS)

    @property
    def cap(self) -> int:
        return self._cap

    # ------------------------------------------------------------------
    # Single listing
    # ------------------------------------------------------------------

    @staticmethod
    def matches(criteria: SearchCriteria, listing: Listing) -> bool:
        """Return ``True`` if *listing* is eligible and satisfies *criteria*."""
        if not listing.is_eligible:
            return False
        passed, reason = criteria.matches_listing(listing)
        if not passed:
            logger.debug("DROP  %s: %s", listing.mls_number, reason)
        return passed

    # ------------------------------------------------------------------
    # New-since-cutoff query
    # ------------------------------------------------------------------

    async def find_new(
        self,
        criteria: SearchCriteria,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[Listing]:
        """Return listings matching *criteria* listed inside ``(since, until]``.

        Args:
            criteria: The saved search's criteria.
            since: Exclusive cutoff on ``listing_date``.  ``None`` (first
                run) treats every current match as new.
            until: Inclusive upper bound on ``listing_date``, normally the
                run instant.  A listing dated after it belongs to the next
                run's window.  ``None`` means no bound.

        Returns:
            At most :attr:`cap` listings, ordered by ``listing_date``
            descending.

        Raises:
            Exception: Anything the listing source raises propagates
                unchanged to the caller.
        """
        cutoff = ensure_utc(since) if since is not None else None
        bound = ensure_utc(until) if until is not None else None
        candidates = await self._source.find_new_matching(
            criteria, since=cutoff, cap=self._cap, until=bound
        )

        fresh = [
            listing
            for listing in candidates
            if (cutoff is None or listing.listing_date > cutoff)
            and (bound is None or listing.listing_date <= bound)
            and self.matches(criteria, listing)
        ]
        fresh.sort(key=lambda listing: listing.listing_date, reverse=True)

        if len(fresh) > self._cap:
            logger.info(
                "Capping %d matching listings at %d (newest kept)",
                len(fresh),
                self._cap,
            )
            fresh = fresh[: self._cap]

        logger.debug(
            "find_new: %d/%d candidate(s) kept (since=%s)",
            len(fresh),
            len(candidates),
            cutoff.isoformat() if cutoff else None,
        )
        return fresh
