"""Collaborator interfaces the scheduling core depends on.

The orchestrator never talks to SQLite or the mail API directly; it is
handed objects that satisfy these structural protocols.  Production wiring
(:mod:`idxalerts.orchestrator.runner`) passes the aiosqlite repositories and
the :class:`~idxalerts.notifiers.notifier.EmailNotifier`; tests pass fakes or
:class:`unittest.mock.AsyncMock` instances.

Typical usage::

    from idxalerts.core.ports import SearchStore

    async def active_count(store: SearchStore) -> int:
        return len(await store.get_active_searches())
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from idxalerts.core.criteria import SearchCriteria
from idxalerts.core.models import Client, Listing, NotificationLogEntry, SavedSearch
from idxalerts.core.settings import MAX_SEARCH_RESULTS

__all__ = ["SearchStore", "ListingSource", "DigestNotifier"]


@runtime_checkable
class SearchStore(Protocol):
    """Persistence for saved searches, clients and the notification log."""

    async def get_active_searches(self) -> list[SavedSearch]:
        """Return every search with ``is_active`` set."""
        ...

    async def get_search_by_id(self, search_id: str) -> SavedSearch | None: ...

    async def update_search_run_metrics(
        self,
        search_id: str,
        match_count: int,
        timestamp: datetime,
    ) -> None:
        """Set ``last_run_at`` and replace ``last_match_count``."""
        ...

    async def get_client_by_id(self, client_id: str) -> Client | None: ...

    async def append_notification_log(self, entry: NotificationLogEntry) -> None:
        """Append one write-once audit row."""
        ...


@runtime_checkable
class ListingSource(Protocol):
    """Read access to the normalised MLS listing table."""

    async def find_new_matching(
        self,
        criteria: SearchCriteria,
        since: datetime | None = None,
        cap: int = MAX_SEARCH_RESULTS,
        *,
        until: datetime | None = None,
    ) -> list[Listing]:
        """Return eligible listings matching *criteria*.

        Only listings with ``listing_date`` strictly after *since* and at or
        before *until* (each when given), newest first, at most *cap* rows.
        """
        ...


@runtime_checkable
class DigestNotifier(Protocol):
    """Delivery of listing digests to clients and to the admin shadow inbox."""

    async def send_client_digest(
        self,
        client: Client,
        search: SavedSearch,
        listings: list[Listing],
    ) -> bool:
        """Return ``True`` on success; never raises for delivery failures."""
        ...

    async def send_admin_shadow_digest(
        self,
        admin_address: str,
        client: Client,
        search: SavedSearch,
        listings: list[Listing],
    ) -> bool: ...
