"""Saved-search repository: searches, clients, and the notification log.

Provides :class:`SearchRepository`, the single data-access object for the
``saved_searches``, ``clients`` and ``search_notifications_log`` tables.  It
satisfies the :class:`~idxalerts.core.ports.SearchStore` protocol used by the
orchestrator and also carries the management operations the portal needs
(create / update / delete / toggle searches, client upsert and expiry).

Schedules are stored in three flat columns (``notification_frequency``,
``notification_time``, ``notification_days``) and rebuilt into the tagged
:data:`~idxalerts.core.schedule.Schedule` variant on every read.

Typical usage::

    from idxalerts.storage.database import open_db
    from idxalerts.storage.repository import SearchRepository

    async def run() -> None:
        conn = await open_db()
        repo = SearchRepository(conn)

        search = await repo.create_search(
            client_id="c-1",
            name="Fairfield condos",
            criteria=SearchCriteria(cities=["Victoria"], max_price=700_000),
            schedule=build_schedule("daily", time="08:00"),
        )
        await repo.toggle_search_active(search.id)
        await conn.close()
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from idxalerts.core.criteria import SearchCriteria
from idxalerts.core.exceptions import ScheduleError, SearchNotFoundError
from idxalerts.core.models import (
    Client,
    ClientStatus,
    NotificationLogEntry,
    NotificationPreferences,
    NotificationType,
    SavedSearch,
)
from idxalerts.core.schedule import Schedule, WeeklySchedule, build_schedule
from idxalerts.storage.database import from_db_timestamp, to_db_timestamp

__all__ = ["SearchRepository"]

logger = logging.getLogger(__name__)

_SEARCH_COLUMNS = """\
    id, client_id, name, description, criteria,
    notification_frequency, notification_time, notification_days,
    admin_shadow_notification, is_active, last_run_at, last_match_count,
    created_at, updated_at"""

#: Fields accepted by :meth:`SearchRepository.update_search`.
_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {"name", "description", "criteria", "schedule", "admin_shadow_notification", "is_active"}
)


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _schedule_columns(schedule: Schedule) -> tuple[str, str | None, str]:
    days = [str(d) for d in schedule.days] if isinstance(schedule, WeeklySchedule) else []
    return schedule.frequency, getattr(schedule, "time", None), json.dumps(days)


def _row_to_search(row: aiosqlite.Row) -> SavedSearch:
    schedule = build_schedule(
        row["notification_frequency"],
        time=row["notification_time"],
        days=json.loads(row["notification_days"] or "[]"),
    )
    return SavedSearch(
        id=row["id"],
        client_id=row["client_id"],
        name=row["name"],
        description=row["description"],
        criteria=SearchCriteria.model_validate(json.loads(row["criteria"] or "{}")),
        schedule=schedule,
        admin_shadow_notification=bool(row["admin_shadow_notification"]),
        is_active=bool(row["is_active"]),
        last_run_at=from_db_timestamp(row["last_run_at"]),
        last_match_count=row["last_match_count"],
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )


def _row_to_client(row: aiosqlite.Row) -> Client:
    return Client(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        phone=row["phone"],
        username=row["username"],
        status=ClientStatus(row["status"]),
        expiry_date=from_db_timestamp(row["expiry_date"]),
        notification_preferences=NotificationPreferences.model_validate(
            json.loads(row["notification_preferences"] or "{}")
        ),
    )


def _row_to_log_entry(row: aiosqlite.Row) -> NotificationLogEntry:
    return NotificationLogEntry(
        id=row["id"],
        saved_search_id=row["saved_search_id"],
        client_id=row["client_id"],
        listing_ids=json.loads(row["listing_ids"] or "[]"),
        listing_count=row["listing_count"],
        admin_notified=bool(row["admin_notified"]),
        email_subject=row["email_subject"],
        notification_type=NotificationType(row["notification_type"]),
        sent_at=from_db_timestamp(row["sent_at"]),
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SearchRepository:
    """Data-access object for saved searches, clients and the audit log.

    It owns no connection lifecycle.  The caller must supply an open
    :class:`aiosqlite.Connection` and close it when done (see
    :func:`~idxalerts.storage.database.open_db`).

    Args:
        conn: Open, configured :class:`aiosqlite.Connection`.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Store protocol
    # ------------------------------------------------------------------

    async def get_active_searches(self) -> list[SavedSearch]:
        """Return every active saved search, oldest first.

        Rows whose stored schedule or criteria no longer validate are logged
        and left out, so one corrupt row cannot block the whole batch.
        """
        cursor = await self._conn.execute(
            f"SELECT {_SEARCH_COLUMNS} FROM saved_searches "
            "WHERE is_active = 1 ORDER BY created_at, id"
        )
        rows = await cursor.fetchall()

        searches: list[SavedSearch] = []
        for row in rows:
            try:
                searches.append(_row_to_search(row))
            except ScheduleError as exc:
                logger.error("Skipping saved search %s with invalid schedule: %s", row["id"], exc)
            except ValueError as exc:
                # Covers malformed JSON and pydantic ValidationError.
                logger.error("Skipping saved search %s with invalid criteria: %s", row["id"], exc)
        logger.debug("Loaded %d active saved searches", len(searches))
        return searches

    async def get_search_by_id(self, search_id: str) -> SavedSearch | None:
        cursor = await self._conn.execute(
            f"SELECT {_SEARCH_COLUMNS} FROM saved_searches WHERE id = ?",
            (search_id,),
        )
        row = await cursor.fetchone()
        return _row_to_search(row) if row is not None else None

    async def update_search_run_metrics(
        self,
        search_id: str,
        match_count: int,
        timestamp: datetime,
    ) -> None:
        """Record a completed run: ``last_run_at = timestamp``, count replaced.

        Idempotent for the same arguments.

        Raises:
            SearchNotFoundError: If *search_id* does not exist.
        """
        cursor = await self._conn.execute(
            """
            UPDATE saved_searches
               SET last_run_at = ?, last_match_count = ?, updated_at = ?
             WHERE id = ?
            """,
            (
                to_db_timestamp(timestamp),
                match_count,
                to_db_timestamp(datetime.now(UTC)),
                search_id,
            ),
        )
        await self._conn.commit()
        if cursor.rowcount == 0:
            raise SearchNotFoundError(search_id)
        logger.debug(
            "Run metrics for %s: last_run_at=%s last_match_count=%d",
            search_id,
            timestamp.isoformat(),
            match_count,
        )

    async def get_client_by_id(self, client_id: str) -> Client | None:
        cursor = await self._conn.execute("SELECT * FROM clients WHERE id = ?", (client_id,))
        row = await cursor.fetchone()
        return _row_to_client(row) if row is not None else None

    async def append_notification_log(self, entry: NotificationLogEntry) -> None:
        """Insert one audit row.  Existing rows are never updated."""
        await self._conn.execute(
            """
            INSERT INTO search_notifications_log
                (saved_search_id, client_id, listing_ids, listing_count,
                 admin_notified, email_subject, notification_type, sent_at)
            VALUES
                (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.saved_search_id,
                entry.client_id,
                json.dumps(entry.listing_ids),
                entry.listing_count,
                int(entry.admin_notified),
                entry.email_subject,
                str(entry.notification_type),
                to_db_timestamp(entry.sent_at),
            ),
        )
        await self._conn.commit()

    # ------------------------------------------------------------------
    # Saved-search management
    # ------------------------------------------------------------------

    async def create_search(
        self,
        *,
        client_id: str,
        name: str,
        criteria: SearchCriteria,
        schedule: Schedule,
        description: str | None = None,
        admin_shadow_notification: bool = False,
        search_id: str | None = None,
    ) -> SavedSearch:
        """Create a new active saved search with no run history.

        Returns:
            The stored :class:`SavedSearch`.
        """
        now = datetime.now(UTC)
        search = SavedSearch(
            id=search_id or str(uuid.uuid4()),
            client_id=client_id,
            name=name,
            description=description,
            criteria=criteria,
            schedule=schedule,
            admin_shadow_notification=admin_shadow_notification,
            is_active=True,
            last_run_at=None,
            last_match_count=0,
            created_at=now,
            updated_at=now,
        )
        frequency, time, days = _schedule_columns(search.schedule)
        await self._conn.execute(
            """
            INSERT INTO saved_searches
                (id, client_id, name, description, criteria,
                 notification_frequency, notification_time, notification_days,
                 admin_shadow_notification, is_active, last_run_at, last_match_count,
                 created_at, updated_at)
            VALUES
                (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, NULL, 0, ?, ?)
            """,
            (
                search.id,
                search.client_id,
                search.name,
                search.description,
                search.criteria.model_dump_json(exclude_none=True),
                frequency,
                time,
                days,
                int(search.admin_shadow_notification),
                to_db_timestamp(now),
                to_db_timestamp(now),
            ),
        )
        await self._conn.commit()
        logger.info(
            "Created saved search %s for client %s (%s)",
            search.id,
            client_id,
            frequency,
        )
        return search

    async def list_searches_by_client(self, client_id: str) -> list[SavedSearch]:
        """Return all of a client's searches, newest first."""
        cursor = await self._conn.execute(
            f"SELECT {_SEARCH_COLUMNS} FROM saved_searches "
            "WHERE client_id = ? ORDER BY created_at DESC, id",
            (client_id,),
        )
        return [_row_to_search(row) for row in await cursor.fetchall()]

    async def update_search(self, search_id: str, **changes: Any) -> SavedSearch:
        """Apply *changes* to a saved search and return the updated record.

        Accepted keys: ``name``, ``description``, ``criteria``, ``schedule``,
        ``admin_shadow_notification``, ``is_active``.  Run metrics are not
        editable here.

        Raises:
            ValueError: If an unknown field is passed.
            SearchNotFoundError: If *search_id* does not exist.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update saved-search fields: {sorted(unknown)}")

        current = await self.get_search_by_id(search_id)
        if current is None:
            raise SearchNotFoundError(search_id)

        # Revalidate through the model so schedule/criteria invariants hold.
        updated = SavedSearch.model_validate(
            {**current.model_dump(), **changes, "updated_at": datetime.now(UTC)}
        )
        frequency, time, days = _schedule_columns(updated.schedule)
        await self._conn.execute(
            """
            UPDATE saved_searches
               SET name = ?, description = ?, criteria = ?,
                   notification_frequency = ?, notification_time = ?, notification_days = ?,
                   admin_shadow_notification = ?, is_active = ?, updated_at = ?
             WHERE id = ?
            """,
            (
                updated.name,
                updated.description,
                updated.criteria.model_dump_json(exclude_none=True),
                frequency,
                time,
                days,
                int(updated.admin_shadow_notification),
                int(updated.is_active),
                to_db_timestamp(updated.updated_at),
                search_id,
            ),
        )
        await self._conn.commit()
        logger.info("Updated saved search %s (%s)", search_id, ", ".join(sorted(changes)))
        return updated

    async def delete_search(self, search_id: str) -> bool:
        """Delete a saved search.  Returns ``True`` if a row was removed."""
        cursor = await self._conn.execute("DELETE FROM saved_searches WHERE id = ?", (search_id,))
        await self._conn.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted saved search %s", search_id)
        return deleted

    async def toggle_search_active(self, search_id: str) -> SavedSearch:
        """Flip ``is_active`` and return the updated search.

        Raises:
            SearchNotFoundError: If *search_id* does not exist.
        """
        current = await self.get_search_by_id(search_id)
        if current is None:
            raise SearchNotFoundError(search_id)
        return await self.update_search(search_id, is_active=not current.is_active)

    async def set_shadow_notification(self, search_id: str, enabled: bool) -> SavedSearch:
        """Turn the admin shadow copy on or off for one search."""
        return await self.update_search(search_id, admin_shadow_notification=enabled)

    async def list_searches_with_shadow(self) -> list[SavedSearch]:
        """Return every search (active or not) with admin shadowing enabled."""
        cursor = await self._conn.execute(
            f"SELECT {_SEARCH_COLUMNS} FROM saved_searches "
            "WHERE admin_shadow_notification = 1 ORDER BY created_at DESC, id"
        )
        return [_row_to_search(row) for row in await cursor.fetchall()]

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    async def upsert_client(self, client: Client) -> None:
        """Insert *client* or replace the stored row with the same id."""
        await self._conn.execute(
            """
            INSERT INTO clients
                (id, name, email, phone, username, status, expiry_date, notification_preferences)
            VALUES
                (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                name = excluded.name,
                email = excluded.email,
                phone = excluded.phone,
                username = excluded.username,
                status = excluded.status,
                expiry_date = excluded.expiry_date,
                notification_preferences = excluded.notification_preferences
            """,
            (
                client.id,
                client.name,
                client.email,
                client.phone,
                client.username,
                str(client.status),
                to_db_timestamp(client.expiry_date),
                client.notification_preferences.model_dump_json(),
            ),
        )
        await self._conn.commit()
        logger.debug("Upserted client %s (status=%s)", client.id, client.status)

    async def expire_overdue_clients(self, now: datetime | None = None) -> list[str]:
        """Mark active clients whose ``expiry_date`` has passed as ``expired``.

        Args:
            now: Reference instant; defaults to the current UTC time.

        Returns:
            Ids of the clients that were expired by this call.
        """
        cutoff = to_db_timestamp(now or datetime.now(UTC))
        cursor = await self._conn.execute(
            "SELECT id FROM clients WHERE status = ? AND expiry_date IS NOT NULL "
            "AND expiry_date <= ? ORDER BY id",
            (str(ClientStatus.ACTIVE), cutoff),
        )
        expired_ids = [row["id"] for row in await cursor.fetchall()]
        if not expired_ids:
            return []

        placeholders = ",".join("?" * len(expired_ids))
        await self._conn.execute(
            f"UPDATE clients SET status = ? WHERE id IN ({placeholders})",
            (str(ClientStatus.EXPIRED), *expired_ids),
        )
        await self._conn.commit()
        logger.info("Expired %d overdue client account(s): %s", len(expired_ids), expired_ids)
        return expired_ids

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    async def list_notification_log(
        self,
        search_id: str | None = None,
        *,
        limit: int = 50,
    ) -> list[NotificationLogEntry]:
        """Return the most recent audit rows, optionally for one search."""
        if search_id is None:
            cursor = await self._conn.execute(
                "SELECT * FROM search_notifications_log ORDER BY sent_at DESC, id DESC LIMIT ?",
                (limit,),
            )
        else:
            cursor = await self._conn.execute(
                "SELECT * FROM search_notifications_log WHERE saved_search_id = ? "
                "ORDER BY sent_at DESC, id DESC LIMIT ?",
                (search_id, limit),
            )
        return [_row_to_log_entry(row) for row in await cursor.fetchall()]
