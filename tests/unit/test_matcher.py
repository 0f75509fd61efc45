"""Unit tests for ``CriteriaMatcher`` against stub and SQLite listing sources.

Properties covered:
- First run (``since=None``) surfaces every current match.
- The cutoff is strict: a listing dated exactly ``since`` is excluded.
- More than 350 matches are capped at 350, newest first.
- Ineligible listings never match, whatever the source returns.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from idxalerts.core.criteria import SearchCriteria
from idxalerts.core.models import ListingStatus
from idxalerts.core.settings import MAX_SEARCH_RESULTS
from idxalerts.filters.matcher import CriteriaMatcher
from idxalerts.storage.listings import ListingRepository

BASE = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def _source(listings) -> AsyncMock:
    source = AsyncMock()
    source.find_new_matching.return_value = list(listings)
    return source


class TestConstruction:
    def test_cap_is_clamped_to_hard_limit(self) -> None:
        assert CriteriaMatcher(_source([]), cap=10_000).cap == MAX_SEARCH_RESULTS

    def test_non_positive_cap_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            CriteriaMatcher(_source([]), cap=0)


class TestMatches:
    def test_ineligible_listing_never_matches(self, make_listing) -> None:
        criteria = SearchCriteria()
        assert CriteriaMatcher.matches(criteria, make_listing())
        assert not CriteriaMatcher.matches(criteria, make_listing(status=ListingStatus.PENDING))
        assert not CriteriaMatcher.matches(criteria, make_listing(permit_idx=False))


class TestFindNewWithStubSource:
    async def test_first_run_returns_every_match(self, make_listing) -> None:
        listings = [make_listing(f"96000{i}", listing_date=BASE - timedelta(days=i)) for i in range(3)]
        matcher = CriteriaMatcher(_source(listings))

        result = await matcher.find_new(SearchCriteria(), since=None)

        assert [listing.mls_number for listing in result] == ["960000", "960001", "960002"]

    async def test_cutoff_is_strict(self, make_listing) -> None:
        at_cutoff = make_listing("960001", listing_date=BASE)
        after = make_listing("960002", listing_date=BASE + timedelta(seconds=1))
        matcher = CriteriaMatcher(_source([at_cutoff, after]))

        result = await matcher.find_new(SearchCriteria(), since=BASE)

        assert [listing.mls_number for listing in result] == ["960002"]

    async def test_upper_bound_is_inclusive(self, make_listing) -> None:
        at_bound = make_listing("960001", listing_date=BASE)
        later = make_listing("960002", listing_date=BASE + timedelta(milliseconds=400))
        matcher = CriteriaMatcher(_source([at_bound, later]))

        result = await matcher.find_new(SearchCriteria(), until=BASE)

        assert [listing.mls_number for listing in result] == ["960001"]

    async def test_reapplies_criteria_to_loose_sources(self, make_listing) -> None:
        listings = [
            make_listing("960001", city="Victoria"),
            make_listing("960002", city="Langford"),
            make_listing("960003", status=ListingStatus.SOLD),
        ]
        matcher = CriteriaMatcher(_source(listings))

        result = await matcher.find_new(SearchCriteria(cities=["Victoria"]))

        assert [listing.mls_number for listing in result] == ["960001"]

    async def test_caps_at_350_newest_first(self, make_listing) -> None:
        listings = [
            make_listing(f"{i:06d}", listing_date=BASE + timedelta(minutes=i)) for i in range(400)
        ]
        matcher = CriteriaMatcher(_source(reversed(listings)))

        result = await matcher.find_new(SearchCriteria())

        assert len(result) == MAX_SEARCH_RESULTS
        dates = [listing.listing_date for listing in result]
        assert dates == sorted(dates, reverse=True)
        assert result[0].mls_number == "000399"
        assert result[-1].mls_number == "000050"

    async def test_passes_cutoff_and_cap_to_source(self, make_listing) -> None:
        source = _source([])
        matcher = CriteriaMatcher(source, cap=25)
        criteria = SearchCriteria()

        await matcher.find_new(criteria, since=BASE)

        source.find_new_matching.assert_awaited_once_with(criteria, since=BASE, cap=25, until=None)

    async def test_source_errors_propagate(self) -> None:
        source = AsyncMock()
        source.find_new_matching.side_effect = RuntimeError("feed down")
        with pytest.raises(RuntimeError, match="feed down"):
            await CriteriaMatcher(source).find_new(SearchCriteria())


class TestFindNewWithSqliteSource:
    async def test_sql_prefilter_and_cutoff(self, db, make_listing) -> None:
        repo = ListingRepository(db)
        await repo.upsert_many(
            [
                make_listing("960001", listing_date=BASE - timedelta(hours=1)),
                make_listing("960002", listing_date=BASE),
                make_listing("960003", listing_date=BASE + timedelta(hours=1)),
                make_listing("960004", listing_date=BASE + timedelta(hours=2), city="Sooke"),
                make_listing("960005", listing_date=BASE + timedelta(hours=3), permit_idx=False),
            ]
        )
        matcher = CriteriaMatcher(repo)

        result = await matcher.find_new(SearchCriteria(cities=["victoria"]), since=BASE)

        assert [listing.mls_number for listing in result] == ["960003"]

    async def test_text_values_match_after_normalisation(self, db, make_listing) -> None:
        repo = ListingRepository(db)
        await repo.upsert_many(
            [
                make_listing("960001", city="North  Saanich"),
                make_listing("960002", city="QUÉBEC"),
                make_listing("960003", city="Sooke"),
            ]
        )
        matcher = CriteriaMatcher(repo)

        result = await matcher.find_new(SearchCriteria(cities=["north saanich", "québec"]))

        assert sorted(listing.mls_number for listing in result) == ["960001", "960002"]

    async def test_window_excludes_listings_after_until(self, db, make_listing) -> None:
        repo = ListingRepository(db)
        await repo.upsert_many(
            [
                make_listing("960001", listing_date=BASE),
                make_listing("960002", listing_date=BASE + timedelta(milliseconds=400)),
            ]
        )
        matcher = CriteriaMatcher(repo)

        first = await matcher.find_new(SearchCriteria(), until=BASE)
        second = await matcher.find_new(
            SearchCriteria(), since=BASE, until=BASE + timedelta(minutes=1)
        )

        assert [listing.mls_number for listing in first] == ["960001"]
        assert [listing.mls_number for listing in second] == ["960002"]

    async def test_keyword_searches_are_capped_after_filtering(self, db, make_listing) -> None:
        repo = ListingRepository(db)
        await repo.upsert_many(
            [
                make_listing(
                    f"{i:06d}",
                    listing_date=BASE + timedelta(minutes=i),
                    description="ocean view" if i % 2 == 0 else "garden suite",
                )
                for i in range(10)
            ]
        )
        matcher = CriteriaMatcher(repo, cap=3)

        result = await matcher.find_new(SearchCriteria(keywords="ocean"))

        assert [listing.mls_number for listing in result] == ["000008", "000006", "000004"]
