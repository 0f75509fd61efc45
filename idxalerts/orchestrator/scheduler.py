"""Continuous minute-aligned scheduler for idxalerts.

Saved-search schedules are minute-exact (``HH:MM`` wall-clock matches), so
the trigger must tick at least once per minute.  :func:`run_continuous`
sleeps until the next minute boundary, runs one batch via
:func:`~idxalerts.orchestrator.runner.run_once`, writes a heartbeat file,
and repeats.

Resource lifecycle is fully owned by ``run_once``, which opens and closes
the database connection and the mail API session on every tick.  The
scheduler itself holds no state between ticks.

Typical usage::

    import asyncio
    from idxalerts.core.run_context import RunContext
    from idxalerts.orchestrator.scheduler import run_continuous

    asyncio.run(run_continuous(RunContext()))
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time
from datetime import UTC, datetime
from typing import NoReturn

from idxalerts.core.run_context import RunContext
from idxalerts.core.settings import Settings
from idxalerts.orchestrator.runner import run_once

__all__ = [
    "HEARTBEAT_PATH",
    "seconds_until_next_minute",
    "run_continuous",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Health-check heartbeat
# ---------------------------------------------------------------------------

#: Path to the heartbeat file written after every tick.  Override via the
#: ``IDXALERTS_HEARTBEAT_PATH`` environment variable.
HEARTBEAT_PATH: str = os.environ.get("IDXALERTS_HEARTBEAT_PATH", "/tmp/idxalerts_heartbeat")

#: A heartbeat older than this marks the process unhealthy (5 missed ticks).
HEARTBEAT_STALE_AFTER_S: int = 300


def _write_heartbeat(path: str = HEARTBEAT_PATH) -> None:
    """Write the current epoch timestamp to the heartbeat file.

    Errors are logged at WARNING level and never propagated.
    """
    try:
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(str(time.time()))
    except OSError:
        logger.warning("Failed to write heartbeat file '%s'.", path, exc_info=True)


# ---------------------------------------------------------------------------
# Interval helper (pure)
# ---------------------------------------------------------------------------


def seconds_until_next_minute(now: float | None = None) -> float:
    """Return seconds from *now* (epoch seconds) to the next minute boundary.

    Always in ``(0, 60]``: exactly on a boundary waits a full minute.
    """
    current = time.time() if now is None else now
    remainder = 60.0 - (current % 60.0)
    return remainder if remainder > 0 else 60.0


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


async def _tick_loop(ctx: RunContext, settings: Settings) -> NoReturn:
    """Run one batch per minute boundary until cancelled."""
    while True:
        await asyncio.sleep(seconds_until_next_minute())
        tick = datetime.now(UTC).replace(second=0, microsecond=0)
        try:
            await run_once(ctx=ctx, settings=settings, now=tick)
        except Exception:
            logger.exception("Unhandled exception in batch at %s; will retry next minute.", tick)
        _write_heartbeat()


async def run_continuous(
    ctx: RunContext,
    settings: Settings | None = None,
) -> NoReturn:
    """Run idxalerts continuously, one batch per minute.

    The function never returns normally.  ``SIGTERM`` cancels the tick task
    after its current ``await`` point; ``SIGINT`` follows the default asyncio
    behaviour.

    Raises:
        asyncio.CancelledError: On shutdown.
    """
    if settings is None:
        settings = Settings()

    logger.info(
        "idxalerts entering continuous mode (mode=%s, tz=%s, minute-aligned ticks).",
        ctx.mode_label,
        settings.timezone,
    )

    tick_task = asyncio.create_task(_tick_loop(ctx, settings), name="idxalerts-tick-loop")

    loop = asyncio.get_running_loop()
    _shutdown_signal: list[str] = []

    def _request_graceful_shutdown(signame: str) -> None:
        if not _shutdown_signal:
            _shutdown_signal.append(signame)
            logger.info("Received %s; graceful shutdown requested.", signame)
        tick_task.cancel()

    loop.add_signal_handler(signal.SIGTERM, lambda: _request_graceful_shutdown("SIGTERM"))

    try:
        await tick_task
    except (asyncio.CancelledError, KeyboardInterrupt):
        if _shutdown_signal:
            logger.info("Graceful shutdown complete (signal: %s).", _shutdown_signal[0])
        else:
            logger.info("Continuous loop cancelled; stopping.")
        tick_task.cancel()
        await asyncio.gather(tick_task, return_exceptions=True)
        raise
    finally:
        with contextlib.suppress(Exception):
            loop.remove_signal_handler(signal.SIGTERM)

    raise RuntimeError("run_continuous exited unexpectedly")
