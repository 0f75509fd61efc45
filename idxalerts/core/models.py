"""idxalerts core domain models.

This module defines the normalised entities shared by every layer: the
listing record read from the MLS feed, the client who owns saved searches,
the saved search itself, and the write-once notification audit entry.

Entities reference each other **by id** only.  A :class:`SavedSearch` holds
``client_id``, never an embedded :class:`Client`; the store joins on read.
The single deliberate exception is :class:`PropertyPreference.property_data`,
which is a point-in-time snapshot of the listing the client tagged, kept so
the portal can still show a Love/Like/Leave card after the listing leaves the
feed.  It is a cache, not a live reference.

All timestamps are timezone-aware UTC once validated; naive inputs are
interpreted as UTC.

Typical usage::

    from idxalerts.core.models import Listing, ListingStatus

    listing = Listing(
        mls_number="960123",
        address="123 Fort St",
        city="Victoria",
        price=749_000,
        property_type="Condo/Apartment",
        status=ListingStatus.ACTIVE,
        permit_idx=True,
        listing_date=datetime(2024, 1, 1, 9, 30, tzinfo=UTC),
    )
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from idxalerts.core.criteria import SearchCriteria
from idxalerts.core.schedule import Frequency, Schedule, WeeklySchedule

__all__ = [
    "ensure_utc",
    "ListingStatus",
    "ClientStatus",
    "NotificationType",
    "PreferenceCategory",
    "Listing",
    "NotificationPreferences",
    "Client",
    "SavedSearch",
    "NotificationLogEntry",
    "DispatchResult",
    "PropertyPreference",
]

logger = logging.getLogger(__name__)


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _utc_or_none(value: object) -> object:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        return ensure_utc(datetime.fromisoformat(value.strip()))
    if isinstance(value, str):
        return None
    return value


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ListingStatus(StrEnum):
    """MLS listing lifecycle states.  Only ``Active`` listings are notified."""

    ACTIVE = "Active"
    PENDING = "Pending"
    SOLD = "Sold"
    EXPIRED = "Expired"
    WITHDRAWN = "Withdrawn"


class ClientStatus(StrEnum):
    """Portal account states.  Only ``active`` clients receive digests."""

    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class NotificationType(StrEnum):
    """How a notification was triggered: by the scheduler or by an operator."""

    AUTOMATED = "automated"
    MANUAL = "manual"


class PreferenceCategory(StrEnum):
    """Love It! / Like It! / Leave It! tags a client can put on a listing."""

    LOVE = "love"
    LIKE = "like"
    LEAVE = "leave"


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class Listing(BaseModel):
    """Normalised MLS listing as read from the listing source.

    Listings are replaced wholesale by the feed refresh job; the scheduling
    core only reads them.  The model is frozen so instances can be shared
    between concurrently running searches.

    Attributes:
        mls_number: MLS listing number, the natural key.
        status: Lifecycle state; only :attr:`ListingStatus.ACTIVE` listings
            are eligible for notification.
        permit_idx: IDX display permission.  Listings without it are never
            shown to clients.
        listing_date: First-seen timestamp; the "new since last run" cutoff
            compares against this field.
        last_updated: Last change in the feed, if known.
    """

    model_config = {"frozen": True}

    mls_number: str = Field(..., min_length=1)
    listing_brokerage: str = ""
    address: str = ""
    city: str | None = None
    neighborhood: str | None = None
    province: str = ""
    postal_code: str = ""
    price: int = Field(..., ge=0)
    property_type: str | None = None
    bedrooms: int | None = Field(None, ge=0)
    bathrooms: float | None = Field(None, ge=0)
    square_feet: int | None = Field(None, ge=0)
    description: str = ""
    features: list[str] = Field(default_factory=list)
    photos: list[str] = Field(default_factory=list, description="Photo URLs, primary first.")
    status: ListingStatus = ListingStatus.ACTIVE
    permit_idx: bool = True
    listing_date: datetime
    last_updated: datetime | None = None

    @field_validator("listing_date", "last_updated", mode="before")
    @classmethod
    def _to_utc(cls, v: object) -> object:
        return _utc_or_none(v)

    @field_validator("city", "neighborhood", "property_type", mode="before")
    @classmethod
    def _strip_blank_strings(cls, v: object) -> object:
        """Coerce blank strings to None."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def is_eligible(self) -> bool:
        """``True`` if the listing may appear in a client notification at all."""
        return self.status == ListingStatus.ACTIVE and self.permit_idx

    @property
    def primary_photo(self) -> str | None:
        return self.photos[0] if self.photos else None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class NotificationPreferences(BaseModel):
    """Per-client delivery preferences."""

    model_config = {"frozen": True}

    email: bool = True
    sms: bool = False
    frequency: Literal["immediate", "daily", "weekly"] = "immediate"


class Client(BaseModel):
    """A portal client who owns saved searches."""

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    name: str = ""
    email: str = ""
    phone: str = ""
    username: str = ""
    status: ClientStatus = ClientStatus.ACTIVE
    expiry_date: datetime | None = None
    notification_preferences: NotificationPreferences = Field(
        default_factory=NotificationPreferences
    )

    @field_validator("expiry_date", mode="before")
    @classmethod
    def _to_utc(cls, v: object) -> object:
        return _utc_or_none(v)

    def is_active_at(self, now: datetime) -> bool:
        """Return ``True`` if the account can receive notifications at *now*.

        The account must be in the ``active`` state and, when an expiry date
        is set, *now* must fall before it.
        """
        if self.status != ClientStatus.ACTIVE:
            return False
        return self.expiry_date is None or ensure_utc(now) < self.expiry_date


# ---------------------------------------------------------------------------
# Saved search
# ---------------------------------------------------------------------------


class SavedSearch(BaseModel):
    """A client's standing query plus its notification schedule.

    The schedule is a tagged variant (see :mod:`idxalerts.core.schedule`),
    so the weekly-days and non-realtime-time invariants hold by
    construction.  Instances are frozen; updates go through the store and
    come back as new instances.

    Attributes:
        last_run_at: Timestamp of the last execution, or ``None`` if the
            search has never run.  Used as the exclusive "new since" cutoff.
        last_match_count: Number of new listings found on the most recent
            run, replaced (not accumulated) on every run.
    """

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    name: str = ""
    description: str | None = None
    criteria: SearchCriteria = Field(default_factory=SearchCriteria)
    schedule: Schedule
    admin_shadow_notification: bool = False
    is_active: bool = True
    last_run_at: datetime | None = None
    last_match_count: int = Field(0, ge=0)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("last_run_at", "created_at", "updated_at", mode="before")
    @classmethod
    def _to_utc(cls, v: object) -> object:
        return _utc_or_none(v)

    @property
    def notification_frequency(self) -> Frequency:
        return Frequency(self.schedule.frequency)

    @property
    def notification_time(self) -> str | None:
        return getattr(self.schedule, "time", None)

    @property
    def notification_days(self) -> list[str]:
        if isinstance(self.schedule, WeeklySchedule):
            return [str(day) for day in self.schedule.days]
        return []


# ---------------------------------------------------------------------------
# Dispatch + audit
# ---------------------------------------------------------------------------


class DispatchResult(BaseModel):
    """Outcome of one fan-out.

    Attributes:
        client_sent: The client digest was delivered.
        shadow_sent: The admin shadow digest was delivered.
        failed_channels: Channels that were attempted but raised or reported
            failure (``"client"``, ``"shadow"``).  Skipped channels are not
            failures.
    """

    model_config = {"frozen": True}

    client_sent: bool = False
    shadow_sent: bool = False
    failed_channels: tuple[str, ...] = ()

    @property
    def delivered(self) -> bool:
        return self.client_sent or self.shadow_sent


class NotificationLogEntry(BaseModel):
    """Write-once audit record of one dispatched digest.

    Attributes:
        listing_ids: MLS numbers included in the digest, in digest order.
        admin_notified: ``True`` if the admin shadow copy was delivered.
    """

    model_config = {"frozen": True}

    id: int | None = None
    saved_search_id: str
    client_id: str
    listing_ids: list[str]
    listing_count: int = Field(..., ge=0)
    admin_notified: bool = False
    email_subject: str = ""
    notification_type: NotificationType = NotificationType.AUTOMATED
    sent_at: datetime

    @field_validator("sent_at", mode="before")
    @classmethod
    def _to_utc(cls, v: object) -> object:
        return _utc_or_none(v)


# ---------------------------------------------------------------------------
# Love / Like / Leave
# ---------------------------------------------------------------------------


class PropertyPreference(BaseModel):
    """A client's Love/Like/Leave tag on one listing.

    ``property_data`` is a point-in-time snapshot of the listing taken each
    time the client (re)tags it.  It is never refreshed from the feed.
    """

    model_config = {"frozen": True}

    id: int | None = None
    client_id: str
    mls_number: str
    address: str = ""
    property_data: Listing
    category: PreferenceCategory
    notes: str | None = None
    view_count: int = Field(1, ge=1)
    first_viewed_at: datetime
    last_viewed_at: datetime

    @field_validator("first_viewed_at", "last_viewed_at", mode="before")
    @classmethod
    def _to_utc(cls, v: object) -> object:
        return _utc_or_none(v)
