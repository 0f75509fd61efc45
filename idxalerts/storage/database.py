"""SQLite database initialisation for idxalerts.

This module is responsible for:

* Opening (or creating) the SQLite file.
* Configuring low-level PRAGMA settings (WAL journal mode, foreign keys).
* Bootstrapping the schema via ``CREATE TABLE IF NOT EXISTS``.  Safe to
  call on every startup because the statements are idempotent.
* Converting timestamps to and from the fixed-width text form stored in
  every ``*_at`` / ``*_date`` column.

Consumers should call :func:`open_db` once per batch and share the returned
connection with the repository layer.  The connection must be closed
explicitly (``await conn.close()``).

Typical usage::

    from idxalerts.storage.database import open_db

    async def main() -> None:
        conn = await open_db(settings.database_path_resolved)
        # ... pass conn to SearchRepository / ListingRepository ...
        await conn.close()
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from idxalerts.core.models import ensure_utc

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "to_db_timestamp",
    "from_db_timestamp",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

#: Fallback database path when no explicit path is passed to :func:`open_db`.
DEFAULT_DB_PATH: Path = Path("idxalerts.db")

#: Fixed-width UTC format, so text comparison in SQL equals time comparison.
_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: ``listings`` mirrors the normalised MLS feed.  Replaced by the feed
#: refresh job; the scheduling core only reads it.
#:
#: Column notes
#: ------------
#: features / photos   JSON arrays of strings.
#: permit_idx          Boolean (0/1) IDX display permission.
#: listing_date        First-seen timestamp, the "new since" cutoff column.
_DDL_LISTINGS = """\
CREATE TABLE IF NOT EXISTS listings (
    mls_number         TEXT     NOT NULL,
    listing_brokerage  TEXT     NOT NULL DEFAULT '',
    address            TEXT     NOT NULL DEFAULT '',
    city               TEXT,
    neighborhood       TEXT,
    province           TEXT     NOT NULL DEFAULT '',
    postal_code        TEXT     NOT NULL DEFAULT '',
    price              INTEGER  NOT NULL,
    property_type      TEXT,
    bedrooms           INTEGER,
    bathrooms          REAL,
    square_feet        INTEGER,
    description        TEXT     NOT NULL DEFAULT '',
    features           TEXT     NOT NULL DEFAULT '[]',
    photos             TEXT     NOT NULL DEFAULT '[]',
    status             TEXT     NOT NULL DEFAULT 'Active',
    permit_idx         INTEGER  NOT NULL DEFAULT 1,
    listing_date       TEXT     NOT NULL,
    last_updated       TEXT,
    PRIMARY KEY (mls_number)
)"""

_DDL_LISTINGS_INDEX = """\
CREATE INDEX IF NOT EXISTS idx_listings_eligible_date
    ON listings (status, permit_idx, listing_date DESC)"""

#: ``clients`` holds portal accounts.  ``notification_preferences`` is a JSON
#: object ``{"email": bool, "sms": bool, "frequency": str}``.
_DDL_CLIENTS = """\
CREATE TABLE IF NOT EXISTS clients (
    id                        TEXT     NOT NULL,
    name                      TEXT     NOT NULL DEFAULT '',
    email                     TEXT     NOT NULL DEFAULT '',
    phone                     TEXT     NOT NULL DEFAULT '',
    username                  TEXT     NOT NULL DEFAULT '',
    status                    TEXT     NOT NULL DEFAULT 'active',
    expiry_date               TEXT,
    notification_preferences  TEXT     NOT NULL DEFAULT '{}',
    PRIMARY KEY (id)
)"""

#: ``saved_searches`` stores the schedule in flat columns; the repository
#: rebuilds the tagged :data:`~idxalerts.core.schedule.Schedule` on read.
#: ``client_id`` is not a foreign key; a dangling reference surfaces at run
#: time as :class:`~idxalerts.core.exceptions.ClientUnavailableError`.
_DDL_SAVED_SEARCHES = """\
CREATE TABLE IF NOT EXISTS saved_searches (
    id                         TEXT     NOT NULL,
    client_id                  TEXT     NOT NULL,
    name                       TEXT     NOT NULL DEFAULT '',
    description                TEXT,
    criteria                   TEXT     NOT NULL DEFAULT '{}',
    notification_frequency     TEXT     NOT NULL,
    notification_time          TEXT,
    notification_days          TEXT     NOT NULL DEFAULT '[]',
    admin_shadow_notification  INTEGER  NOT NULL DEFAULT 0,
    is_active                  INTEGER  NOT NULL DEFAULT 1,
    last_run_at                TEXT,
    last_match_count           INTEGER  NOT NULL DEFAULT 0,
    created_at                 TEXT     NOT NULL,
    updated_at                 TEXT     NOT NULL,
    PRIMARY KEY (id)
)"""

_DDL_SAVED_SEARCHES_INDEX = """\
CREATE INDEX IF NOT EXISTS idx_saved_searches_client
    ON saved_searches (client_id)"""

#: ``search_notifications_log`` is append-only.  ``listing_ids`` is a JSON
#: array of MLS numbers in digest order.
_DDL_NOTIFICATIONS_LOG = """\
CREATE TABLE IF NOT EXISTS search_notifications_log (
    id                 INTEGER  PRIMARY KEY AUTOINCREMENT,
    saved_search_id    TEXT     NOT NULL,
    client_id          TEXT     NOT NULL,
    listing_ids        TEXT     NOT NULL DEFAULT '[]',
    listing_count      INTEGER  NOT NULL,
    admin_notified     INTEGER  NOT NULL DEFAULT 0,
    email_subject      TEXT     NOT NULL DEFAULT '',
    notification_type  TEXT     NOT NULL DEFAULT 'automated',
    sent_at            TEXT     NOT NULL
)"""

#: ``property_preferences`` is keyed by (client_id, mls_number).
#: ``property_data`` is the JSON listing snapshot taken at tag time.
_DDL_PROPERTY_PREFERENCES = """\
CREATE TABLE IF NOT EXISTS property_preferences (
    id               INTEGER  PRIMARY KEY AUTOINCREMENT,
    client_id        TEXT     NOT NULL,
    mls_number       TEXT     NOT NULL,
    address          TEXT     NOT NULL DEFAULT '',
    property_data    TEXT     NOT NULL,
    category         TEXT     NOT NULL,
    notes            TEXT,
    view_count       INTEGER  NOT NULL DEFAULT 1,
    first_viewed_at  TEXT     NOT NULL,
    last_viewed_at   TEXT     NOT NULL,
    UNIQUE (client_id, mls_number)
)"""

_SCHEMA: tuple[str, ...] = (
    _DDL_LISTINGS,
    _DDL_LISTINGS_INDEX,
    _DDL_CLIENTS,
    _DDL_SAVED_SEARCHES,
    _DDL_SAVED_SEARCHES_INDEX,
    _DDL_NOTIFICATIONS_LOG,
    _DDL_PROPERTY_PREFERENCES,
)

# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def to_db_timestamp(value: datetime | None) -> str | None:
    """Format *value* as fixed-width UTC text (naive values are taken as UTC)."""
    if value is None:
        return None
    return ensure_utc(value).strftime(_TS_FORMAT)


def from_db_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and configure it for production.

    Steps performed on every call:

    1. Create parent directories for the DB file if they do not exist.
    2. Open the ``aiosqlite`` connection.
    3. Set ``row_factory = aiosqlite.Row`` so columns can be accessed by name.
    4. Enable WAL journal mode and foreign-key enforcement.
    5. Call :func:`create_schema` to bootstrap tables (idempotent).

    Args:
        path: Filesystem path for the SQLite file.  Defaults to
            :data:`DEFAULT_DB_PATH`.

    Returns:
        An open, configured :class:`aiosqlite.Connection`.  The caller is
        responsible for closing it.

    Raises:
        aiosqlite.OperationalError: If the database file cannot be opened or
            created.
    """
    db_path = Path(path or DEFAULT_DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", db_path)

    conn: aiosqlite.Connection = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    await _configure_pragmas(conn)
    await create_schema(conn)

    logger.info("SQLite database ready at %s (WAL mode enabled, schema verified)", db_path)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create all required tables and indexes if they do not already exist.

    Idempotent and non-destructive: existing data is untouched.

    Args:
        conn: An open :class:`aiosqlite.Connection`.
    """
    for statement in _SCHEMA:
        await conn.execute(statement)
    await conn.commit()
    logger.debug("Schema bootstrap complete (%d statements verified)", len(_SCHEMA))


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    """Apply PRAGMA settings that must be set immediately after opening."""
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.warning(
            "Requested WAL journal mode but SQLite reported: %r. "
            "This may happen for in-memory databases (':memory:').",
            mode,
        )
    else:
        logger.debug("SQLite journal_mode set to WAL")

    await conn.execute("PRAGMA foreign_keys=ON")
