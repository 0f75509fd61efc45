"""Unit tests for the SQLite storage layer.

Every test runs against a real on-disk database under ``tmp_path`` created
by the ``db`` fixture in ``conftest.py``.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from idxalerts.core.criteria import SearchCriteria
from idxalerts.core.exceptions import SearchNotFoundError
from idxalerts.core.models import (
    ClientStatus,
    NotificationLogEntry,
    NotificationType,
    PreferenceCategory,
)
from idxalerts.core.schedule import WeeklySchedule, build_schedule
from idxalerts.storage.database import (
    create_schema,
    from_db_timestamp,
    open_db,
    to_db_timestamp,
)
from idxalerts.storage.listings import ListingRepository
from idxalerts.storage.preferences import PreferenceRepository
from idxalerts.storage.repository import SearchRepository

NOW = datetime(2024, 3, 4, 16, 0, tzinfo=UTC)


async def _create(repo: SearchRepository, **overrides):
    kwargs = {
        "client_id": "client-1",
        "name": "Fairfield condos",
        "criteria": SearchCriteria(cities=["Victoria"], max_price=800_000),
        "schedule": build_schedule("daily", time="08:00"),
    }
    kwargs.update(overrides)
    return await repo.create_search(**kwargs)


# ---------------------------------------------------------------------------
# database
# ---------------------------------------------------------------------------


class TestDatabase:
    async def test_schema_is_idempotent(self, db) -> None:
        await create_schema(db)
        await create_schema(db)
        cursor = await db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        tables = {row["name"] for row in await cursor.fetchall()}
        assert {
            "listings",
            "clients",
            "saved_searches",
            "search_notifications_log",
            "property_preferences",
        } <= tables

    async def test_open_db_creates_parent_directories(self, tmp_path) -> None:
        path = tmp_path / "nested" / "dir" / "alerts.db"
        conn = await open_db(path)
        try:
            assert path.exists()
        finally:
            await conn.close()

    def test_timestamps_round_trip_as_utc(self) -> None:
        local = datetime(2024, 1, 1, 8, 0, tzinfo=UTC) + timedelta(microseconds=5)
        assert from_db_timestamp(to_db_timestamp(local)) == local
        assert to_db_timestamp(None) is None
        assert from_db_timestamp("") is None

    def test_timestamp_text_orders_like_time(self) -> None:
        earlier = to_db_timestamp(datetime(2024, 1, 1, 9, 0, 0, 999_999, tzinfo=UTC))
        later = to_db_timestamp(datetime(2024, 1, 1, 9, 0, 1, tzinfo=UTC))
        assert earlier < later


# ---------------------------------------------------------------------------
# SearchRepository: store protocol
# ---------------------------------------------------------------------------


class TestSearchStore:
    async def test_create_and_get_round_trip(self, db) -> None:
        repo = SearchRepository(db)
        created = await _create(
            repo,
            schedule=build_schedule("weekly", time="7:30", days=["monday", "friday"]),
        )

        loaded = await repo.get_search_by_id(created.id)

        assert loaded is not None
        assert loaded.is_active is True
        assert loaded.last_run_at is None
        assert loaded.last_match_count == 0
        assert loaded.criteria == created.criteria
        assert isinstance(loaded.schedule, WeeklySchedule)
        assert loaded.notification_days == ["monday", "friday"]
        assert loaded.notification_time == "07:30"

    async def test_get_unknown_search_returns_none(self, db) -> None:
        assert await SearchRepository(db).get_search_by_id("missing") is None

    async def test_active_searches_exclude_inactive(self, db) -> None:
        repo = SearchRepository(db)
        kept = await _create(repo, search_id="a")
        dropped = await _create(repo, search_id="b")
        await repo.toggle_search_active(dropped.id)

        active = await repo.get_active_searches()

        assert [s.id for s in active] == [kept.id]

    async def test_rows_with_invalid_schedule_are_skipped(self, db) -> None:
        repo = SearchRepository(db)
        good = await _create(repo, search_id="good")
        bad = await _create(repo, search_id="bad")
        await db.execute(
            "UPDATE saved_searches SET notification_frequency = 'weekly', "
            "notification_days = '[]' WHERE id = ?",
            (bad.id,),
        )
        await db.commit()

        active = await repo.get_active_searches()

        assert [s.id for s in active] == [good.id]

    @pytest.mark.parametrize(
        "criteria_blob",
        ['{"cities": ["Victoria"', '{"minPrice": 900000, "maxPrice": 500000}'],
    )
    async def test_rows_with_invalid_criteria_are_skipped(self, db, criteria_blob) -> None:
        repo = SearchRepository(db)
        good = await _create(repo, search_id="good")
        bad = await _create(repo, search_id="bad")
        await db.execute(
            "UPDATE saved_searches SET criteria = ? WHERE id = ?",
            (criteria_blob, bad.id),
        )
        await db.commit()

        active = await repo.get_active_searches()

        assert [s.id for s in active] == [good.id]

    async def test_update_run_metrics_is_idempotent(self, db) -> None:
        repo = SearchRepository(db)
        search = await _create(repo)

        await repo.update_search_run_metrics(search.id, 4, NOW)
        await repo.update_search_run_metrics(search.id, 4, NOW)

        loaded = await repo.get_search_by_id(search.id)
        assert loaded.last_run_at == NOW
        assert loaded.last_match_count == 4

    async def test_match_count_is_replaced_not_accumulated(self, db) -> None:
        repo = SearchRepository(db)
        search = await _create(repo)
        await repo.update_search_run_metrics(search.id, 7, NOW)
        await repo.update_search_run_metrics(search.id, 0, NOW + timedelta(minutes=1))

        loaded = await repo.get_search_by_id(search.id)
        assert loaded.last_match_count == 0
        assert loaded.last_run_at == NOW + timedelta(minutes=1)

    async def test_update_run_metrics_unknown_search(self, db) -> None:
        with pytest.raises(SearchNotFoundError):
            await SearchRepository(db).update_search_run_metrics("missing", 1, NOW)

    async def test_client_round_trip(self, db, make_client) -> None:
        repo = SearchRepository(db)
        client = make_client(expiry_date=NOW + timedelta(days=30))
        await repo.upsert_client(client)

        assert await repo.get_client_by_id(client.id) == client
        assert await repo.get_client_by_id("nobody") is None

    async def test_notification_log_is_append_only(self, db) -> None:
        repo = SearchRepository(db)
        for i in range(2):
            await repo.append_notification_log(
                NotificationLogEntry(
                    saved_search_id="s-1",
                    client_id="client-1",
                    listing_ids=[f"96000{i}"],
                    listing_count=1,
                    admin_notified=bool(i),
                    email_subject="1 New Property - Test",
                    notification_type=NotificationType.MANUAL,
                    sent_at=NOW + timedelta(minutes=i),
                )
            )

        entries = await repo.list_notification_log("s-1")

        assert [e.listing_ids for e in entries] == [["960001"], ["960000"]]
        assert entries[0].admin_notified is True
        assert entries[0].notification_type == NotificationType.MANUAL
        assert all(e.id is not None for e in entries)


# ---------------------------------------------------------------------------
# SearchRepository: management
# ---------------------------------------------------------------------------


class TestSearchManagement:
    async def test_update_search_revalidates_schedule(self, db) -> None:
        repo = SearchRepository(db)
        search = await _create(repo)

        updated = await repo.update_search(
            search.id,
            name="Renamed",
            schedule=build_schedule("monthly", time="09:00"),
        )

        loaded = await repo.get_search_by_id(search.id)
        assert updated.name == loaded.name == "Renamed"
        assert loaded.notification_frequency == "monthly"

    async def test_update_search_rejects_unknown_fields(self, db) -> None:
        repo = SearchRepository(db)
        search = await _create(repo)
        with pytest.raises(ValueError, match="last_run_at"):
            await repo.update_search(search.id, last_run_at=NOW)

    async def test_update_missing_search(self, db) -> None:
        with pytest.raises(SearchNotFoundError):
            await SearchRepository(db).update_search("missing", name="x")

    async def test_delete_search(self, db) -> None:
        repo = SearchRepository(db)
        search = await _create(repo)
        assert await repo.delete_search(search.id) is True
        assert await repo.delete_search(search.id) is False

    async def test_toggle_search_active_flips(self, db) -> None:
        repo = SearchRepository(db)
        search = await _create(repo)
        assert (await repo.toggle_search_active(search.id)).is_active is False
        assert (await repo.toggle_search_active(search.id)).is_active is True

    async def test_shadow_flag_listing(self, db) -> None:
        repo = SearchRepository(db)
        plain = await _create(repo, search_id="plain")
        shadowed = await _create(repo, search_id="shadowed")
        await repo.set_shadow_notification(shadowed.id, True)

        ids = [s.id for s in await repo.list_searches_with_shadow()]

        assert ids == [shadowed.id]
        assert plain.id not in ids

    async def test_list_searches_by_client(self, db) -> None:
        repo = SearchRepository(db)
        await _create(repo, search_id="a")
        await _create(repo, search_id="b", client_id="client-2")
        assert [s.id for s in await repo.list_searches_by_client("client-2")] == ["b"]


class TestClientExpiry:
    async def test_expires_only_overdue_active_clients(self, db, make_client) -> None:
        repo = SearchRepository(db)
        await repo.upsert_client(make_client("overdue", expiry_date=NOW - timedelta(days=1)))
        await repo.upsert_client(make_client("current", expiry_date=NOW + timedelta(days=1)))
        await repo.upsert_client(make_client("open-ended"))
        await repo.upsert_client(
            make_client(
                "suspended",
                status=ClientStatus.SUSPENDED,
                expiry_date=NOW - timedelta(days=1),
            )
        )

        expired = await repo.expire_overdue_clients(NOW)

        assert expired == ["overdue"]
        assert (await repo.get_client_by_id("overdue")).status == ClientStatus.EXPIRED
        assert (await repo.get_client_by_id("suspended")).status == ClientStatus.SUSPENDED
        assert await repo.expire_overdue_clients(NOW) == []


# ---------------------------------------------------------------------------
# ListingRepository
# ---------------------------------------------------------------------------


class TestListingRepository:
    async def test_upsert_replaces_by_mls_number(self, db, make_listing) -> None:
        repo = ListingRepository(db)
        await repo.upsert_many([make_listing("960001", price=500_000)])
        await repo.upsert_many([make_listing("960001", price=480_000)])

        listing = await repo.get("960001")
        assert listing.price == 480_000
        assert await repo.upsert_many([]) == 0

    async def test_numeric_bounds_exclude_unknown_values(self, db, make_listing) -> None:
        repo = ListingRepository(db)
        await repo.upsert_many(
            [
                make_listing("960001", bedrooms=3),
                make_listing("960002", bedrooms=None),
                make_listing("960003", bedrooms=1),
            ]
        )

        result = await repo.find_new_matching(SearchCriteria(min_bedrooms=2))

        assert [listing.mls_number for listing in result] == ["960001"]

    async def test_results_are_newest_first_and_capped(self, db, make_listing) -> None:
        repo = ListingRepository(db)
        await repo.upsert_many(
            [make_listing(f"{i:06d}", listing_date=NOW + timedelta(hours=i)) for i in range(5)]
        )

        result = await repo.find_new_matching(SearchCriteria(), cap=2)

        assert [listing.mls_number for listing in result] == ["000004", "000003"]


# ---------------------------------------------------------------------------
# PreferenceRepository
# ---------------------------------------------------------------------------


class TestPreferences:
    async def test_retagging_increments_view_count(self, db, make_listing) -> None:
        repo = PreferenceRepository(db)
        listing = make_listing("960001")

        first = await repo.set_preference("client-1", listing, PreferenceCategory.LIKE, now=NOW)
        second = await repo.set_preference(
            "client-1",
            listing.model_copy(update={"price": 599_000}),
            PreferenceCategory.LOVE,
            notes="Call agent",
            now=NOW + timedelta(hours=1),
        )

        assert first.view_count == 1
        assert second.view_count == 2
        assert second.category == PreferenceCategory.LOVE
        assert second.notes == "Call agent"
        assert second.first_viewed_at == NOW
        assert second.last_viewed_at == NOW + timedelta(hours=1)
        assert second.property_data.price == 599_000

    async def test_list_and_count_by_category(self, db, make_listing) -> None:
        repo = PreferenceRepository(db)
        await repo.set_preference("c", make_listing("1"), PreferenceCategory.LOVE, now=NOW)
        await repo.set_preference(
            "c", make_listing("2"), PreferenceCategory.LEAVE, now=NOW + timedelta(minutes=1)
        )
        await repo.set_preference(
            "c", make_listing("3"), PreferenceCategory.LOVE, now=NOW + timedelta(minutes=2)
        )

        loved = await repo.list_preferences("c", PreferenceCategory.LOVE)
        everything = await repo.list_preferences("c")
        counts = await repo.category_counts("c")

        assert [p.mls_number for p in loved] == ["3", "1"]
        assert [p.mls_number for p in everything] == ["3", "2", "1"]
        assert counts == {
            PreferenceCategory.LOVE: 2,
            PreferenceCategory.LIKE: 0,
            PreferenceCategory.LEAVE: 1,
        }

    async def test_remove_preference(self, db, make_listing) -> None:
        repo = PreferenceRepository(db)
        await repo.set_preference("c", make_listing("1"), PreferenceCategory.LIKE)
        assert await repo.remove_preference("c", "1") is True
        assert await repo.remove_preference("c", "1") is False
        assert await repo.get_preference("c", "1") is None
