"""Structured log event name constants for the notification engine.

Every key transition emits a log record with an ``event`` field (passed via
``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode the value shows
up under ``extra.event``; in text mode the message text is self-describing.

Usage example::

    import logging
    from idxalerts.core import events

    logger = logging.getLogger(__name__)

    logger.info("Batch started", extra={"event": events.BATCH_START})
"""

from __future__ import annotations

__all__ = [
    # Batch lifecycle
    "BATCH_START",
    "BATCH_COMPLETE",
    "BATCH_ABORT",
    # Per-search lifecycle
    "SEARCH_DUE",
    "SEARCH_NO_MATCHES",
    "SEARCH_CLIENT_UNAVAILABLE",
    "SEARCH_RUN_OK",
    "SEARCH_RUN_ERROR",
    # Dispatch
    "DISPATCH_CLIENT_SENT",
    "DISPATCH_CLIENT_SKIPPED",
    "DISPATCH_SHADOW_SENT",
    "DISPATCH_FAILED",
    "NOTIFICATION_LOGGED",
]

# ---------------------------------------------------------------------------
# Batch lifecycle
# ---------------------------------------------------------------------------

#: Emitted once when a batch starts discovering due searches.
BATCH_START: str = "BATCH_START"

#: Emitted once when a batch finishes and logs its summary.
BATCH_COMPLETE: str = "BATCH_COMPLETE"

#: Emitted when the batch cannot enumerate searches at all.
BATCH_ABORT: str = "BATCH_ABORT"

# ---------------------------------------------------------------------------
# Per-search lifecycle
# ---------------------------------------------------------------------------

#: The schedule evaluator selected a search for this batch.
SEARCH_DUE: str = "SEARCH_DUE"

#: The search ran and found nothing new; metrics updated, nothing sent.
SEARCH_NO_MATCHES: str = "SEARCH_NO_MATCHES"

#: The owning client is missing or inactive; search skipped, error counted.
SEARCH_CLIENT_UNAVAILABLE: str = "SEARCH_CLIENT_UNAVAILABLE"

#: The search ran to completion (matches dispatched and logged).
SEARCH_RUN_OK: str = "SEARCH_RUN_OK"

#: The search raised; isolated at the per-search boundary.
SEARCH_RUN_ERROR: str = "SEARCH_RUN_ERROR"

# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

#: The client digest was delivered (or logged in dry-run mode).
DISPATCH_CLIENT_SENT: str = "DISPATCH_CLIENT_SENT"

#: The client digest was skipped because the client opted out of email.
DISPATCH_CLIENT_SKIPPED: str = "DISPATCH_CLIENT_SKIPPED"

#: The admin shadow digest was delivered.
DISPATCH_SHADOW_SENT: str = "DISPATCH_SHADOW_SENT"

#: A send attempt failed; the other channel is unaffected.
DISPATCH_FAILED: str = "DISPATCH_FAILED"

#: An audit row was appended to the notification log.
NOTIFICATION_LOGGED: str = "NOTIFICATION_LOGGED"
