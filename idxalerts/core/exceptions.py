"""idxalerts exception taxonomy.

Every custom exception inherits from :class:`IdxAlertsError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    IdxAlertsError
    ├── ConfigError
    ├── ScheduleError
    ├── StorageError
    │   └── SearchNotFoundError
    ├── ListingSourceError
    ├── ClientUnavailableError
    ├── NotificationError
    │   └── EmailDeliveryError
    │       └── EmailRateLimitError
    └── SchedulerError

Usage:

    from idxalerts.core.exceptions import ClientUnavailableError

    raise ClientUnavailableError(search.client_id, "client not found")
"""

from __future__ import annotations

import logging

__all__ = [
    "IdxAlertsError",
    # Config
    "ConfigError",
    "ScheduleError",
    # Storage
    "StorageError",
    "SearchNotFoundError",
    # Collaborators
    "ListingSourceError",
    "ClientUnavailableError",
    # Notification
    "NotificationError",
    "EmailDeliveryError",
    "EmailRateLimitError",
    # Orchestrator
    "SchedulerError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class IdxAlertsError(Exception):
    """Root exception for all idxalerts errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible.
    """


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(IdxAlertsError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - Live mode without mail API credentials.
        - An unknown timezone name.
    """


class ScheduleError(IdxAlertsError):
    """Raised when a stored notification schedule cannot be interpreted.

    Examples:
        - A ``weekly`` row with no notification days.
        - A ``notification_time`` that is not ``HH:MM``.
    """


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(IdxAlertsError):
    """Raised when a database or persistence operation fails."""


class SearchNotFoundError(StorageError):
    """Raised when a saved search id does not resolve to a stored row.

    Args:
        search_id: The id that was looked up.
    """

    def __init__(self, search_id: str) -> None:
        self.search_id = search_id
        super().__init__(f"Saved search not found: {search_id!r}")


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class ListingSourceError(IdxAlertsError):
    """Raised when the listing source cannot answer a match query."""


class ClientUnavailableError(IdxAlertsError):
    """Raised when a search's owning client cannot receive notifications.

    This is a data-integrity condition (dangling ``client_id``, expired or
    suspended account).  The run loop treats it as a skipped search that
    still counts towards the batch error tally.

    Args:
        client_id: The client id referenced by the saved search.
        reason: Short explanation (``"not found"``, ``"status=expired"`` …).
    """

    def __init__(self, client_id: str, reason: str) -> None:
        self.client_id = client_id
        self.reason = reason
        super().__init__(f"Client {client_id!r} unavailable: {reason}")


# ---------------------------------------------------------------------------
# Notification layer
# ---------------------------------------------------------------------------


class NotificationError(IdxAlertsError):
    """Base class for notification delivery errors."""


class EmailDeliveryError(NotificationError):
    """Raised when the mail API returns an error or is unreachable.

    Args:
        message: Human-readable error description.
        status_code: HTTP status code from the mail API, if available.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Email delivery error{detail}: {message}")


class EmailRateLimitError(EmailDeliveryError):
    """Raised when the mail API returns HTTP 429 (Too Many Requests).

    Args:
        retry_after: Seconds to wait before retrying, as reported by the API.
    """

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"Rate limited, retry after {retry_after}s",
            status_code=429,
        )


# ---------------------------------------------------------------------------
# Orchestrator layer
# ---------------------------------------------------------------------------


class SchedulerError(IdxAlertsError):
    """Raised when a batch cannot even start.

    The canonical case is the search repository being unreachable while
    enumerating active searches.  This is the only error that escapes
    :meth:`~idxalerts.orchestrator.run_loop.SchedulerRunLoop.execute_due_searches`.
    """
