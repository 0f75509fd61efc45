"""idxalerts process entry-point.

Usage:
    python -m idxalerts [--dry-run] [--once | --search-id ID | --expire-clients | --serve]

The orchestration logic lives in ``idxalerts.orchestrator``.  This module
calls ``configure_logging()`` first so that every subsequent import already
has a working logger, then hands off to the orchestrator.

Default behaviour is continuous: the scheduler runs one batch at every
minute boundary.  ``--once`` runs a single batch and exits, ``--search-id``
forces one search regardless of its schedule, and ``--serve`` starts the
HTTP trigger routes for an external cron service.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from idxalerts.core import configure_logging
from idxalerts.core.exceptions import ConfigError, SchedulerError
from idxalerts.core.run_context import RunContext
from idxalerts.core.settings import Settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="idxalerts",
        description="Saved-search scheduling and email notification engine.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run a single batch of due searches and exit.",
    )
    mode.add_argument(
        "--search-id",
        default=None,
        metavar="ID",
        help="Run one saved search immediately, ignoring its schedule, and exit.",
    )
    mode.add_argument(
        "--expire-clients",
        action="store_true",
        help="Mark overdue client accounts as expired and exit.",
    )
    mode.add_argument(
        "--serve",
        action="store_true",
        help="Serve the HTTP cron trigger routes instead of the internal scheduler.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log digests without calling the mail API.",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind address for --serve.")
    parser.add_argument("--port", type=int, default=8000, help="Port for --serve.")
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"idxalerts: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)
    logger.info("idxalerts starting up")

    settings = Settings()
    ctx = RunContext(dry_run=args.dry_run or settings.dry_run)
    logger.info("Run context: %s", ctx)

    # Lazy imports keep startup fast when the module is imported without running.
    from idxalerts.orchestrator.runner import (  # noqa: PLC0415
        expire_clients,
        run_once,
        run_search_once,
    )
    from idxalerts.orchestrator.scheduler import run_continuous  # noqa: PLC0415

    try:
        if args.serve:
            import uvicorn  # noqa: PLC0415

            from idxalerts.api.app import create_app  # noqa: PLC0415

            uvicorn.run(create_app(settings, ctx), host=args.host, port=args.port)
        elif args.search_id:
            result = asyncio.run(run_search_once(ctx, args.search_id, settings))
            if not result.success:
                logger.error("Search %s failed: %s", args.search_id, result.error)
                sys.exit(1)
            logger.info("Search %s: %d new listing(s).", args.search_id, result.matches)
        elif args.expire_clients:
            expired = asyncio.run(expire_clients(settings))
            logger.info("Expired %d client account(s).", len(expired))
        elif args.once:
            logger.info("Running a single batch (--once).")
            summary = asyncio.run(run_once(ctx, settings))
            logger.info("Batch result: %s", summary)
        else:
            logger.info("Running in continuous mode (Ctrl+C to stop).")
            asyncio.run(run_continuous(ctx=ctx, settings=settings))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except SchedulerError as exc:
        logger.critical("Batch aborted: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted; exiting.")
        sys.exit(0)
    except asyncio.CancelledError:
        logger.info("Shutdown complete; exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
