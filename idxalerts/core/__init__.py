"""Core domain models, schedules, settings, logging configuration, and shared utilities."""

from idxalerts.core.criteria import SearchCriteria
from idxalerts.core.exceptions import (
    ClientUnavailableError,
    ConfigError,
    EmailDeliveryError,
    EmailRateLimitError,
    IdxAlertsError,
    ListingSourceError,
    NotificationError,
    ScheduleError,
    SchedulerError,
    SearchNotFoundError,
    StorageError,
)
from idxalerts.core.logging_config import JsonFormatter, configure_logging
from idxalerts.core.models import (
    Client,
    ClientStatus,
    DispatchResult,
    Listing,
    ListingStatus,
    NotificationLogEntry,
    NotificationType,
    PreferenceCategory,
    PropertyPreference,
    SavedSearch,
)
from idxalerts.core.schedule import Frequency, Schedule, Weekday, build_schedule, is_due
from idxalerts.core.settings import MAX_SEARCH_RESULTS, Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "Listing",
    "ListingStatus",
    "Client",
    "ClientStatus",
    "SavedSearch",
    "NotificationLogEntry",
    "NotificationType",
    "DispatchResult",
    "PropertyPreference",
    "PreferenceCategory",
    # Criteria + schedules
    "SearchCriteria",
    "Frequency",
    "Weekday",
    "Schedule",
    "build_schedule",
    "is_due",
    # Settings
    "Settings",
    "MAX_SEARCH_RESULTS",
    # Exceptions
    "IdxAlertsError",
    "ConfigError",
    "ScheduleError",
    "StorageError",
    "SearchNotFoundError",
    "ListingSourceError",
    "ClientUnavailableError",
    "NotificationError",
    "EmailDeliveryError",
    "EmailRateLimitError",
    "SchedulerError",
]
