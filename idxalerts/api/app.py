"""HTTP trigger surface for idxalerts.

An external cron service (or an operator) drives batches through these
routes instead of, or alongside, the in-process continuous scheduler:

* ``GET  /api/cron/search-notifications`` — run every due search.
* ``POST /api/cron/search-notifications`` — body ``{"searchId": "..."}``
  forces one search; an empty body runs the batch.
* ``POST /api/cron/check-expiry`` — flip overdue client accounts to expired.
* ``GET  /health`` — liveness probe, unauthenticated.

Every cron route requires ``CRON_SECRET``, sent as ``Authorization: Bearer
<secret>`` or as the ``?secret=`` query parameter.  An unset secret rejects
every call.
"""

from __future__ import annotations

import hmac
import logging
import time
from datetime import UTC, datetime
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from idxalerts.core.exceptions import ConfigError, SchedulerError
from idxalerts.core.run_context import RunContext
from idxalerts.core.settings import Settings
from idxalerts.orchestrator.runner import expire_clients, run_once, run_search_once

__all__ = ["create_app", "ForceRunRequest"]

logger = logging.getLogger(__name__)


class ForceRunRequest(BaseModel):
    """Body of ``POST /api/cron/search-notifications``."""

    model_config = ConfigDict(populate_by_name=True)

    search_id: str | None = Field(default=None, alias="searchId")


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def _provided_secret(request: Request) -> str:
    secret = request.query_params.get("secret")
    if secret:
        return secret
    header = request.headers.get("authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):]
    return ""


def _check_secret(request: Request) -> None:
    expected: str = request.app.state.settings.cron_secret
    provided = _provided_secret(request)
    if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Rejected cron call to %s: invalid secret", request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")


def _failure(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": str(exc), "timestamp": _timestamp()},
    )


def create_app(settings: Settings | None = None, ctx: RunContext | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Loaded from the environment when ``None``.
        ctx: Defaults to a context honouring ``settings.dry_run``.
    """
    if settings is None:
        settings = Settings()
    if ctx is None:
        ctx = RunContext(dry_run=settings.dry_run)

    app = FastAPI(title="idxalerts", docs_url=None, redoc_url=None)
    app.state.settings = settings
    app.state.ctx = ctx

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
        )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "mode": ctx.mode_label}

    async def _run_batch() -> JSONResponse:
        started = time.monotonic()
        try:
            summary = await run_once(ctx, settings)
        except (SchedulerError, ConfigError) as exc:
            logger.error("Cron batch failed: %s", exc)
            return _failure(exc)
        duration_ms = int((time.monotonic() - started) * 1000)
        return JSONResponse(
            content={
                "success": True,
                "message": "Cron job completed successfully",
                "stats": {
                    "executed": summary.executed,
                    "totalMatches": summary.matches,
                    "errors": summary.errors,
                    "duration": f"{duration_ms}ms",
                },
                "timestamp": _timestamp(),
            }
        )

    @app.get("/api/cron/search-notifications")
    async def run_due_searches(request: Request) -> JSONResponse:
        _check_secret(request)
        return await _run_batch()

    @app.post("/api/cron/search-notifications")
    async def force_run(
        request: Request,
        payload: ForceRunRequest | None = Body(default=None),
    ) -> JSONResponse:
        _check_secret(request)
        if payload is None or not payload.search_id:
            return await _run_batch()

        try:
            result = await run_search_once(ctx, payload.search_id, settings)
        except ConfigError as exc:
            logger.error("Forced run of %s failed: %s", payload.search_id, exc)
            return _failure(exc)
        return JSONResponse(
            content={
                "success": result.success,
                "message": (
                    f"Search executed successfully. Found {result.matches} new properties."
                    if result.success
                    else "Search execution failed"
                ),
                "matches": result.matches,
                "error": result.error,
            }
        )

    @app.post("/api/cron/check-expiry")
    async def check_expiry(request: Request) -> JSONResponse:
        _check_secret(request)
        expired = await expire_clients(settings)
        return JSONResponse(
            content={
                "success": True,
                "expired": len(expired),
                "clientIds": expired,
                "timestamp": _timestamp(),
            }
        )

    return app
