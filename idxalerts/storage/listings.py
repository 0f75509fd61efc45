"""Listing repository: the SQLite-backed listing source.

Provides :class:`ListingRepository`, which satisfies
:class:`~idxalerts.core.ports.ListingSource`.  It pushes every criterion SQL
can evaluate exactly (eligibility, the ``since``/``until`` window, numeric
bounds) into the query.  City, neighbourhood, property type and keywords are
matched afterwards by :class:`~idxalerts.filters.matcher.CriteriaMatcher`,
so when any of them is set the result cap is applied in Python rather than
in SQL.

The feed refresh job writes through :meth:`ListingRepository.upsert_many`.

Typical usage::

    repo = ListingRepository(conn)
    await repo.upsert_many(feed_listings)
    fresh = await repo.find_new_matching(criteria, since=search.last_run_at)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

import aiosqlite

from idxalerts.core.criteria import SearchCriteria
from idxalerts.core.models import Listing, ListingStatus
from idxalerts.core.settings import MAX_SEARCH_RESULTS
from idxalerts.storage.database import from_db_timestamp, to_db_timestamp

__all__ = ["ListingRepository"]

logger = logging.getLogger(__name__)

_LISTING_COLUMNS = (
    "mls_number",
    "listing_brokerage",
    "address",
    "city",
    "neighborhood",
    "province",
    "postal_code",
    "price",
    "property_type",
    "bedrooms",
    "bathrooms",
    "square_feet",
    "description",
    "features",
    "photos",
    "status",
    "permit_idx",
    "listing_date",
    "last_updated",
)


def _row_to_listing(row: aiosqlite.Row) -> Listing:
    return Listing(
        mls_number=row["mls_number"],
        listing_brokerage=row["listing_brokerage"],
        address=row["address"],
        city=row["city"],
        neighborhood=row["neighborhood"],
        province=row["province"],
        postal_code=row["postal_code"],
        price=row["price"],
        property_type=row["property_type"],
        bedrooms=row["bedrooms"],
        bathrooms=row["bathrooms"],
        square_feet=row["square_feet"],
        description=row["description"],
        features=json.loads(row["features"] or "[]"),
        photos=json.loads(row["photos"] or "[]"),
        status=ListingStatus(row["status"]),
        permit_idx=bool(row["permit_idx"]),
        listing_date=from_db_timestamp(row["listing_date"]),
        last_updated=from_db_timestamp(row["last_updated"]),
    )


def _listing_to_row(listing: Listing) -> tuple[Any, ...]:
    return (
        listing.mls_number,
        listing.listing_brokerage,
        listing.address,
        listing.city,
        listing.neighborhood,
        listing.province,
        listing.postal_code,
        listing.price,
        listing.property_type,
        listing.bedrooms,
        listing.bathrooms,
        listing.square_feet,
        listing.description,
        json.dumps(listing.features),
        json.dumps(listing.photos),
        str(listing.status),
        int(listing.permit_idx),
        to_db_timestamp(listing.listing_date),
        to_db_timestamp(listing.last_updated),
    )


def _has_text_criteria(criteria: SearchCriteria) -> bool:
    # Text comparisons collapse whitespace and lowercase non-ASCII text, which
    # SQLite's lower() does not, so they stay with the matcher.
    return bool(
        criteria.cities
        or criteria.neighborhoods
        or criteria.property_types
        or criteria.keyword_terms
    )


class ListingRepository:
    """Data-access object for the ``listings`` table.

    Args:
        conn: Open, configured :class:`aiosqlite.Connection`.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # ListingSource protocol
    # ------------------------------------------------------------------

    async def find_new_matching(
        self,
        criteria: SearchCriteria,
        since: datetime | None = None,
        cap: int = MAX_SEARCH_RESULTS,
        *,
        until: datetime | None = None,
    ) -> list[Listing]:
        """Return eligible listings matching *criteria*, newest first.

        Args:
            criteria: Saved-search criteria.
            since: Exclusive lower bound on ``listing_date``; ``None`` means
                no cutoff.
            cap: Maximum rows returned when every criterion is evaluated in
                SQL.
            until: Inclusive upper bound on ``listing_date``; ``None`` means
                no bound.

        Returns:
            Listings ordered by ``listing_date`` descending.  When text
            criteria are set the list is not capped here and may contain
            misses; the caller re-applies criteria and the cap.
        """
        clauses = ["status = ?", "permit_idx = 1"]
        params: list[Any] = [str(ListingStatus.ACTIVE)]

        if since is not None:
            clauses.append("listing_date > ?")
            params.append(to_db_timestamp(since))
        if until is not None:
            clauses.append("listing_date <= ?")
            params.append(to_db_timestamp(until))

        bounds: list[tuple[str, str, float | None]] = [
            ("price", ">=", criteria.min_price),
            ("price", "<=", criteria.max_price),
            ("bedrooms", ">=", criteria.min_bedrooms),
            ("bathrooms", ">=", criteria.min_bathrooms),
            ("square_feet", ">=", criteria.min_square_feet),
            ("square_feet", "<=", criteria.max_square_feet),
        ]
        for column, op, value in bounds:
            if value is not None:
                # NULL comparisons are false, so unknown values never match.
                clauses.append(f"{column} {op} ?")
                params.append(value)

        sql = (
            f"SELECT {', '.join(_LISTING_COLUMNS)} FROM listings "
            f"WHERE {' AND '.join(clauses)} "
            "ORDER BY listing_date DESC, mls_number"
        )
        if not _has_text_criteria(criteria):
            sql += " LIMIT ?"
            params.append(cap)

        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        listings = [_row_to_listing(row) for row in rows]
        logger.debug(
            "find_new_matching: %d candidate(s) (since=%s, until=%s, cap=%d)",
            len(listings),
            since.isoformat() if since else None,
            until.isoformat() if until else None,
            cap,
        )
        return listings

    # ------------------------------------------------------------------
    # Feed writes
    # ------------------------------------------------------------------

    async def upsert_many(self, listings: list[Listing]) -> int:
        """Insert or replace listings by MLS number.

        Returns:
            The number of rows written.
        """
        if not listings:
            return 0

        placeholders = ",".join("?" * len(_LISTING_COLUMNS))
        updates = ", ".join(f"{col} = excluded.{col}" for col in _LISTING_COLUMNS[1:])
        await self._conn.executemany(
            f"INSERT INTO listings ({', '.join(_LISTING_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT (mls_number) DO UPDATE SET {updates}",
            [_listing_to_row(listing) for listing in listings],
        )
        await self._conn.commit()
        logger.debug("upsert_many: %d listing(s) written", len(listings))
        return len(listings)

    async def get(self, mls_number: str) -> Listing | None:
        cursor = await self._conn.execute(
            f"SELECT {', '.join(_LISTING_COLUMNS)} FROM listings WHERE mls_number = ?",
            (mls_number,),
        )
        row = await cursor.fetchone()
        return _row_to_listing(row) if row is not None else None
