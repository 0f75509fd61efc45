"""Love It! / Like It! / Leave It! preference storage.

:class:`PreferenceRepository` persists a client's tag on a listing, keyed by
``(client_id, mls_number)``.  Re-tagging the same listing updates the
category, bumps ``view_count`` and replaces the stored listing snapshot.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import UTC, datetime

import aiosqlite

from idxalerts.core.exceptions import StorageError
from idxalerts.core.models import Listing, PreferenceCategory, PropertyPreference
from idxalerts.storage.database import from_db_timestamp, to_db_timestamp

__all__ = ["PreferenceRepository"]

logger = logging.getLogger(__name__)


def _row_to_preference(row: aiosqlite.Row) -> PropertyPreference:
    return PropertyPreference(
        id=row["id"],
        client_id=row["client_id"],
        mls_number=row["mls_number"],
        address=row["address"],
        property_data=Listing.model_validate_json(row["property_data"]),
        category=PreferenceCategory(row["category"]),
        notes=row["notes"],
        view_count=row["view_count"],
        first_viewed_at=from_db_timestamp(row["first_viewed_at"]),
        last_viewed_at=from_db_timestamp(row["last_viewed_at"]),
    )


class PreferenceRepository:
    """Data-access object for the ``property_preferences`` table."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def set_preference(
        self,
        client_id: str,
        listing: Listing,
        category: PreferenceCategory,
        notes: str | None = None,
        *,
        now: datetime | None = None,
    ) -> PropertyPreference:
        """Tag *listing* for *client_id*, creating or updating the row.

        On update the category and notes are replaced, ``view_count`` is
        incremented, ``last_viewed_at`` is refreshed and the snapshot is
        retaken.  ``first_viewed_at`` never changes.
        """
        stamp = to_db_timestamp(now or datetime.now(UTC))
        await self._conn.execute(
            """
            INSERT INTO property_preferences
                (client_id, mls_number, address, property_data, category, notes,
                 view_count, first_viewed_at, last_viewed_at)
            VALUES
                (?, ?, ?, ?, ?, ?, 1, ?, ?)
            ON CONFLICT (client_id, mls_number) DO UPDATE SET
                address = excluded.address,
                property_data = excluded.property_data,
                category = excluded.category,
                notes = excluded.notes,
                view_count = property_preferences.view_count + 1,
                last_viewed_at = excluded.last_viewed_at
            """,
            (
                client_id,
                listing.mls_number,
                listing.address,
                listing.model_dump_json(),
                str(category),
                notes,
                stamp,
                stamp,
            ),
        )
        await self._conn.commit()

        preference = await self.get_preference(client_id, listing.mls_number)
        if preference is None:
            raise StorageError(
                f"Preference for {client_id}/{listing.mls_number} missing after write"
            )
        logger.info(
            "Client %s tagged %s as %s (views=%d)",
            client_id,
            listing.mls_number,
            category,
            preference.view_count,
        )
        return preference

    async def get_preference(self, client_id: str, mls_number: str) -> PropertyPreference | None:
        cursor = await self._conn.execute(
            "SELECT * FROM property_preferences WHERE client_id = ? AND mls_number = ?",
            (client_id, mls_number),
        )
        row = await cursor.fetchone()
        return _row_to_preference(row) if row is not None else None

    async def list_preferences(
        self,
        client_id: str,
        category: PreferenceCategory | None = None,
    ) -> list[PropertyPreference]:
        """Return a client's tags, most recently viewed first."""
        if category is None:
            cursor = await self._conn.execute(
                "SELECT * FROM property_preferences WHERE client_id = ? "
                "ORDER BY last_viewed_at DESC, id DESC",
                (client_id,),
            )
        else:
            cursor = await self._conn.execute(
                "SELECT * FROM property_preferences WHERE client_id = ? AND category = ? "
                "ORDER BY last_viewed_at DESC, id DESC",
                (client_id, str(category)),
            )
        return [_row_to_preference(row) for row in await cursor.fetchall()]

    async def remove_preference(self, client_id: str, mls_number: str) -> bool:
        cursor = await self._conn.execute(
            "DELETE FROM property_preferences WHERE client_id = ? AND mls_number = ?",
            (client_id, mls_number),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    async def category_counts(self, client_id: str) -> dict[PreferenceCategory, int]:
        """Return the number of tags per category (every category present)."""
        cursor = await self._conn.execute(
            "SELECT category, COUNT(*) AS n FROM property_preferences "
            "WHERE client_id = ? GROUP BY category",
            (client_id,),
        )
        counts: Counter[PreferenceCategory] = Counter(
            {PreferenceCategory(row["category"]): row["n"] for row in await cursor.fetchall()}
        )
        return {category: counts[category] for category in PreferenceCategory}
