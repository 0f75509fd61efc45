"""Saved-search criteria model.

Defines :class:`SearchCriteria`, the structured filter a client stores with
each saved search.  Every listing is evaluated against these criteria to
decide whether it belongs in the next notification digest.

All bounds are *inclusive* and every field is optional: an unset field
imposes no constraint.  Field names are snake_case; camelCase aliases
(``minPrice``, ``propertyTypes`` …) are accepted so criteria JSON written by
the portal front-end loads unchanged.

Typical usage::

    from idxalerts.core.criteria import SearchCriteria

    criteria = SearchCriteria(
        cities=["Victoria", "Saanich"],
        max_price=900_000,
        min_bedrooms=3,
    )

    if criteria.matches_price(749_000):
        ...  # proceed
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from idxalerts.core.models import Listing

__all__ = ["SearchCriteria"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_WHITESPACE_RE = re.compile(r"\s+")


def _normalise(text: str) -> str:
    """Lowercase and collapse internal whitespace for case-insensitive matching."""
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


def _at_least(value: float | None, minimum: float | None) -> bool:
    # An unknown value never satisfies an explicit bound.
    if minimum is None:
        return True
    return value is not None and value >= minimum


def _at_most(value: float | None, maximum: float | None) -> bool:
    if maximum is None:
        return True
    return value is not None and value <= maximum


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class SearchCriteria(BaseModel):
    """Structured filter attached to a saved search.

    Attributes:
        cities: Allowed cities (case-insensitive exact match).  Empty list
            means no city restriction.
        neighborhoods: Allowed neighbourhood labels (case-insensitive exact
            match).  Empty list means no restriction.
        min_price: Minimum list price (inclusive).
        max_price: Maximum list price (inclusive).
        property_types: Allowed property types (case-insensitive).
        min_bedrooms: Minimum bedroom count.
        min_bathrooms: Minimum bathroom count (half baths allowed).
        min_square_feet: Minimum finished floor area.
        max_square_feet: Maximum finished floor area.
        keywords: Free text.  Every whitespace-separated term must appear
            in the listing's address, description, or features.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    cities: list[str] = Field(default_factory=list)
    neighborhoods: list[str] = Field(default_factory=list)
    min_price: int | None = Field(None, ge=0)
    max_price: int | None = Field(None, ge=0)
    property_types: list[str] = Field(default_factory=list)
    min_bedrooms: int | None = Field(None, ge=0)
    min_bathrooms: float | None = Field(None, ge=0)
    min_square_feet: int | None = Field(None, ge=0)
    max_square_feet: int | None = Field(None, ge=0)
    keywords: str | None = None

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("cities", "neighborhoods", "property_types", mode="before")
    @classmethod
    def _drop_blank_entries(cls, v: object) -> object:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple, set)):
            return [str(item).strip() for item in v if str(item).strip()]
        return v

    @field_validator("keywords", mode="before")
    @classmethod
    def _blank_keywords_to_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _validate_ranges(self) -> SearchCriteria:
        """Ensure min ≤ max for all bounded pairs."""
        pairs: list[tuple[str, int | None, str, int | None]] = [
            ("min_price", self.min_price, "max_price", self.max_price),
            ("min_square_feet", self.min_square_feet, "max_square_feet", self.max_square_feet),
        ]
        for lo_name, lo, hi_name, hi in pairs:
            if lo is not None and hi is not None and lo > hi:
                raise ValueError(f"{lo_name} ({lo}) must be ≤ {hi_name} ({hi})")
        return self

    # ------------------------------------------------------------------
    # Per-axis predicates
    # ------------------------------------------------------------------

    @property
    def keyword_terms(self) -> list[str]:
        """Normalised keyword terms; empty when no keywords are set."""
        if not self.keywords:
            return []
        return _normalise(self.keywords).split(" ")

    def matches_city(self, city: str | None) -> bool:
        if not self.cities:
            return True
        if city is None:
            return False
        return _normalise(city) in {_normalise(c) for c in self.cities}

    def matches_neighborhood(self, neighborhood: str | None) -> bool:
        if not self.neighborhoods:
            return True
        if neighborhood is None:
            return False
        return _normalise(neighborhood) in {_normalise(n) for n in self.neighborhoods}

    def matches_price(self, price: int) -> bool:
        """Return True if *price* falls within [min_price, max_price]."""
        return _at_least(price, self.min_price) and _at_most(price, self.max_price)

    def matches_property_type(self, property_type: str | None) -> bool:
        if not self.property_types:
            return True
        if property_type is None:
            return False
        return _normalise(property_type) in {_normalise(t) for t in self.property_types}

    def matches_size(
        self,
        bedrooms: int | None,
        bathrooms: float | None,
        square_feet: int | None,
    ) -> bool:
        """Return True if the structural minimums and the area maximum hold."""
        return (
            _at_least(bedrooms, self.min_bedrooms)
            and _at_least(bathrooms, self.min_bathrooms)
            and _at_least(square_feet, self.min_square_feet)
            and _at_most(square_feet, self.max_square_feet)
        )

    def matches_keywords(self, *texts: str) -> bool:
        """Return True if every keyword term occurs in the joined *texts*."""
        terms = self.keyword_terms
        if not terms:
            return True
        haystack = _normalise(" ".join(texts))
        return all(term in haystack for term in terms)

    # ------------------------------------------------------------------
    # Whole-listing evaluation
    # ------------------------------------------------------------------

    def matches_listing(self, listing: Listing) -> tuple[bool, str]:
        """Evaluate every criterion against *listing*.

        Checks run in a fixed order and stop at the first failure.  Listing
        eligibility (status, IDX permission) is *not* checked here; that is
        :class:`~idxalerts.filters.matcher.CriteriaMatcher`'s job.

        Returns:
            A ``(passed, reason)`` tuple.  *reason* is ``""`` on pass, or a
            short explanation of the first failed check.
        """
        if not self.matches_city(listing.city):
            return False, f"city {listing.city!r} not in {self.cities}"
        if not self.matches_neighborhood(listing.neighborhood):
            return False, f"neighborhood {listing.neighborhood!r} not in {self.neighborhoods}"
        if not self.matches_price(listing.price):
            return False, f"price {listing.price} outside [{self.min_price}, {self.max_price}]"
        if not self.matches_property_type(listing.property_type):
            return False, f"property type {listing.property_type!r} not in {self.property_types}"
        if not self.matches_size(listing.bedrooms, listing.bathrooms, listing.square_feet):
            return (
                False,
                f"size beds={listing.bedrooms} baths={listing.bathrooms} "
                f"sqft={listing.square_feet} below minimum or above maximum",
            )
        if not self.matches_keywords(listing.address, listing.description, *listing.features):
            return False, f"keywords {self.keywords!r} not found"
        return True, ""
