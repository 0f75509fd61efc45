"""SQLite-backed repositories for saved searches, clients, listings and preferences."""

from idxalerts.storage.database import DEFAULT_DB_PATH, create_schema, open_db
from idxalerts.storage.listings import ListingRepository
from idxalerts.storage.preferences import PreferenceRepository
from idxalerts.storage.repository import SearchRepository

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "SearchRepository",
    "ListingRepository",
    "PreferenceRepository",
]
