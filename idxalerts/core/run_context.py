"""Runtime context for a single idxalerts process.

Encapsulates the operator-selected operating mode without changing any
configuration values.  One :class:`RunContext` is created in
:mod:`idxalerts.__main__` (or by the HTTP trigger app) and threaded through
the orchestrator and notifier layers.

dry_run
    Run every search end-to-end, including run-metric updates and the audit
    log, but **log the digest** instead of calling the mail API.  Useful for
    local development and for previewing a new saved search.

:attr:`should_notify` is the single property every layer should read:

    >>> RunContext().should_notify
    True

    >>> RunContext(dry_run=True).should_notify
    False
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

__all__ = ["RunContext"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Immutable container for per-process operating-mode flags.

    Attributes:
        dry_run: When ``True``, digests are formatted and logged but never
            sent.
    """

    dry_run: bool = field(default=False)

    @property
    def should_notify(self) -> bool:
        """Return ``True`` if the notifier should actually send messages."""
        return not self.dry_run

    @property
    def mode_label(self) -> str:
        """``"dry-run"`` or ``"live"``, for log lines."""
        return "dry-run" if self.dry_run else "live"

    def __str__(self) -> str:
        return f"RunContext(mode={self.mode_label}, should_notify={self.should_notify})"
