"""Shared pytest fixtures and configuration for the idxalerts test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
import pytest
from pydantic_settings import SettingsConfigDict

from idxalerts.core import configure_logging
from idxalerts.core.criteria import SearchCriteria
from idxalerts.core.models import Client, Listing, SavedSearch
from idxalerts.core.schedule import build_schedule
from idxalerts.core.settings import Settings
from idxalerts.storage.database import open_db


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test."""
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove idxalerts-related env vars and disable ``.env`` loading.

    pydantic-settings reads the on-disk ``.env`` file directly rather than
    via ``os.environ``, so the file is switched off as well.
    """
    sensitive_prefixes = (
        "EMAIL_",
        "ADMIN_",
        "APP_URL",
        "CRON_",
        "DATABASE_",
        "TIMEZONE",
        "MAX_",
        "DRY_RUN",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in sensitive_prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "idxalerts-test.db"


@pytest.fixture()
async def db(db_path: Path) -> AsyncIterator[aiosqlite.Connection]:
    """Open a fresh on-disk SQLite database with the full schema."""
    conn = await open_db(db_path)
    try:
        yield conn
    finally:
        await conn.close()


# ---------------------------------------------------------------------------
# Domain factories
# ---------------------------------------------------------------------------


def _make_listing(mls_number: str = "960001", **overrides: Any) -> Listing:
    """Build an eligible :class:`Listing` with sensible defaults."""
    data: dict[str, Any] = {
        "mls_number": mls_number,
        "listing_brokerage": "Coast Realty",
        "address": f"{mls_number[-3:]} Fort St",
        "city": "Victoria",
        "neighborhood": "Fairfield",
        "price": 650_000,
        "property_type": "Condo",
        "bedrooms": 2,
        "bathrooms": 2.0,
        "square_feet": 900,
        "description": "Bright corner unit with ocean view",
        "features": ["balcony", "in-suite laundry"],
        "listing_date": datetime(2024, 3, 1, 12, 0, tzinfo=UTC),
    }
    data.update(overrides)
    return Listing(**data)


def _make_client(client_id: str = "client-1", **overrides: Any) -> Client:
    data: dict[str, Any] = {
        "id": client_id,
        "name": "Alex Doe",
        "email": "alex@example.com",
    }
    data.update(overrides)
    return Client(**data)


def _make_search(search_id: str = "search-1", **overrides: Any) -> SavedSearch:
    data: dict[str, Any] = {
        "id": search_id,
        "client_id": "client-1",
        "name": "Fairfield condos",
        "criteria": SearchCriteria(cities=["Victoria"]),
        "schedule": build_schedule("realtime"),
    }
    data.update(overrides)
    return SavedSearch(**data)


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")


@pytest.fixture()
def make_listing() -> Any:
    """Factory fixture: ``make_listing("960001", price=500_000)``."""
    return _make_listing


@pytest.fixture()
def make_client() -> Any:
    return _make_client


@pytest.fixture()
def make_search() -> Any:
    return _make_search
