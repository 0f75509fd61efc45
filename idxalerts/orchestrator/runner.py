"""Orchestrator entry-points: assemble all components and execute one batch.

This module wires the production collaborators together and exposes the
three operations every trigger surface (CLI, HTTP cron route, continuous
scheduler) calls:

* :func:`run_once` — one scheduled batch (due searches only).
* :func:`run_search_once` — a forced run of one search by id.
* :func:`expire_clients` — the account-expiry sweep.

Component wiring
----------------
Each call:

1. Loads :class:`~idxalerts.core.settings.Settings` (or uses the supplied
   instance).
2. Opens the SQLite database via :func:`~idxalerts.storage.database.open_db`.
3. Creates the :class:`~idxalerts.storage.repository.SearchRepository`,
   :class:`~idxalerts.storage.listings.ListingRepository`,
   :class:`~idxalerts.filters.matcher.CriteriaMatcher`,
   :class:`~idxalerts.notifiers.email.EmailClient` (live mode only),
   :class:`~idxalerts.notifiers.notifier.EmailNotifier`,
   :class:`~idxalerts.notifiers.dispatcher.NotificationDispatcher`,
   :class:`~idxalerts.orchestrator.search_runner.SearchRunner` and
   :class:`~idxalerts.orchestrator.run_loop.SchedulerRunLoop`.
4. Tags every log line of the batch with a fresh ``run_id``.
5. Tears every resource down on exit, including on exceptions.

In **live mode** the mail API must be configured, or the call raises
:exc:`~idxalerts.core.exceptions.ConfigError` before any I/O.

Typical usage::

    import asyncio
    from idxalerts.core.run_context import RunContext
    from idxalerts.orchestrator.runner import run_once

    summary = asyncio.run(run_once(RunContext(dry_run=True)))
    print(summary)
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime

from idxalerts.core.exceptions import ConfigError
from idxalerts.core.logging_config import RUN_ID_CTX
from idxalerts.core.run_context import RunContext
from idxalerts.core.settings import Settings
from idxalerts.filters.matcher import CriteriaMatcher
from idxalerts.notifiers.dispatcher import NotificationDispatcher
from idxalerts.notifiers.email import EmailClient
from idxalerts.notifiers.notifier import EmailNotifier
from idxalerts.orchestrator.run_loop import BatchSummary, ManualRunResult, SchedulerRunLoop
from idxalerts.orchestrator.search_runner import SearchRunner
from idxalerts.storage.database import open_db
from idxalerts.storage.listings import ListingRepository
from idxalerts.storage.repository import SearchRepository

__all__ = ["run_once", "run_search_once", "expire_clients", "build_run_loop"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@asynccontextmanager
async def build_run_loop(
    ctx: RunContext,
    settings: Settings,
) -> AsyncIterator[SchedulerRunLoop]:
    """Yield a fully wired :class:`SchedulerRunLoop` and close everything after.

    Raises:
        ConfigError: Live mode without mail API credentials.
    """
    if ctx.should_notify and not settings.email_configured:
        raise ConfigError(
            "Live mode requires mail API credentials. "
            "Set EMAIL_API_URL, EMAIL_API_KEY and EMAIL_FROM_ADDRESS in .env (or env vars)."
        )
    if not settings.shadow_configured:
        logger.debug("ADMIN_EMAIL not set; admin shadow digests are disabled.")

    conn = await open_db(settings.database_path_resolved)
    try:
        async with AsyncExitStack() as stack:
            email_client: EmailClient | None = None
            if settings.email_configured:
                email_client = await stack.enter_async_context(
                    EmailClient(
                        api_url=settings.email_api_url,
                        api_key=settings.email_api_key,
                        from_address=settings.email_from_address,
                        from_name=settings.email_from_name,
                    )
                )

            search_repo = SearchRepository(conn)
            matcher = CriteriaMatcher(ListingRepository(conn), cap=settings.max_search_results)
            notifier = EmailNotifier(email_client, ctx, app_url=settings.app_url)
            dispatcher = NotificationDispatcher(notifier, admin_address=settings.admin_email)
            runner = SearchRunner(search_repo, matcher, dispatcher)

            yield SchedulerRunLoop(
                search_repo,
                runner,
                tz=settings.tzinfo,
                max_concurrency=settings.max_concurrent_searches,
            )
    finally:
        await conn.close()
        logger.debug("Database connection closed.")


def _new_run_id() -> str:
    return uuid.uuid4().hex[:8]


# ---------------------------------------------------------------------------
# Public entry-points
# ---------------------------------------------------------------------------


async def run_once(
    ctx: RunContext,
    settings: Settings | None = None,
    *,
    now: datetime | None = None,
) -> BatchSummary:
    """Execute one scheduled batch.

    Args:
        ctx: Runtime operating-mode flags.
        settings: Pre-loaded settings; loaded from the environment if ``None``.
        now: Batch instant; defaults to the current time.

    Returns:
        The batch's :class:`~idxalerts.orchestrator.run_loop.BatchSummary`.

    Raises:
        ConfigError: Live mode without mail API credentials.
        SchedulerError: Active searches could not be enumerated.
    """
    if settings is None:
        settings = Settings()

    token = RUN_ID_CTX.set(_new_run_id())
    t0 = time.monotonic()
    try:
        logger.info("run_once starting (mode=%s db=%s)", ctx.mode_label, settings.database_path)
        async with build_run_loop(ctx, settings) as loop:
            summary = await loop.execute_due_searches(now)
        logger.info(
            "run_once finished in %.2f s (executed=%d matches=%d errors=%d)",
            time.monotonic() - t0,
            summary.executed,
            summary.matches,
            summary.errors,
        )
        return summary
    finally:
        RUN_ID_CTX.reset(token)


async def run_search_once(
    ctx: RunContext,
    search_id: str,
    settings: Settings | None = None,
) -> ManualRunResult:
    """Force a run of one search, bypassing its schedule.

    Raises:
        ConfigError: Live mode without mail API credentials.
    """
    if settings is None:
        settings = Settings()

    token = RUN_ID_CTX.set(_new_run_id())
    try:
        logger.info("Manual run of search %s (mode=%s)", search_id, ctx.mode_label)
        async with build_run_loop(ctx, settings) as loop:
            return await loop.execute_search_by_id(search_id)
    finally:
        RUN_ID_CTX.reset(token)


async def expire_clients(
    settings: Settings | None = None,
    *,
    now: datetime | None = None,
) -> list[str]:
    """Flip overdue active client accounts to ``expired``.

    Returns:
        Ids of the clients expired by this call.
    """
    if settings is None:
        settings = Settings()

    conn = await open_db(settings.database_path_resolved)
    try:
        return await SearchRepository(conn).expire_overdue_clients(now)
    finally:
        await conn.close()
