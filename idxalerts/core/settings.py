"""idxalerts application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

Every field maps 1-to-1 to an environment variable: the field name is the
**lowercase** version of the env-var name (e.g. ``ADMIN_EMAIL`` →
``admin_email``).

Typical usage::

    from idxalerts.core.settings import Settings

    settings = Settings()                  # loads from env + .env
    print(settings.email_configured)       # True / False
    tz = settings.tzinfo                   # ZoneInfo("America/Vancouver")
"""

from __future__ import annotations

import logging
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings", "MAX_SEARCH_RESULTS"]

logger = logging.getLogger(__name__)

#: Hard ceiling on listings returned for one saved-search run (MLS/IDX
#: display rule).  Independent of any pagination.
MAX_SEARCH_RESULTS: int = 350


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).

    Mail API fields may be left empty during development; :attr:`email_configured`
    then returns ``False`` and live runs refuse to start.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    database_path: str = Field(
        default="data/idxalerts.db",
        description="Path to the SQLite database file.",
    )

    # ------------------------------------------------------------------
    # Email delivery
    # ------------------------------------------------------------------
    email_api_url: str = Field(
        default="",
        description="HTTPS endpoint of the transactional mail API (POST JSON).",
    )
    email_api_key: str = Field(default="", description="Bearer token for the mail API.")
    email_from_address: str = Field(default="", description="Sender address for digests.")
    email_from_name: str = Field(default="PREC Real Estate", description="Sender display name.")
    admin_email: str = Field(
        default="",
        description="Recipient of admin shadow digests; empty disables shadow delivery.",
    )
    app_url: str = Field(
        default="",
        description="Public portal base URL used for links inside digests.",
    )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    timezone: str = Field(
        default="America/Vancouver",
        description="IANA zone for the notification wall clock.",
    )
    max_search_results: int = Field(
        default=MAX_SEARCH_RESULTS,
        ge=1,
        le=MAX_SEARCH_RESULTS,
        description="Per-search result cap (≤ 350).",
    )
    max_concurrent_searches: int = Field(
        default=1,
        ge=1,
        description="Searches executed concurrently within one batch (1 = sequential).",
    )

    # ------------------------------------------------------------------
    # Trigger surface
    # ------------------------------------------------------------------
    cron_secret: str = Field(
        default="",
        description="Shared secret required by the HTTP trigger routes.",
    )

    # ------------------------------------------------------------------
    # Runtime flags
    # ------------------------------------------------------------------
    dry_run: bool = Field(
        default=False,
        description="Log digests instead of calling the mail API.",
    )
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {v!r}") from exc
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    @field_validator("app_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def tzinfo(self) -> ZoneInfo:
        """The notification wall-clock zone as a :class:`~zoneinfo.ZoneInfo`."""
        return ZoneInfo(self.timezone)

    @property
    def database_path_resolved(self) -> Path:
        """Return the database path as a resolved :class:`~pathlib.Path`."""
        return Path(self.database_path).resolve()

    @property
    def email_configured(self) -> bool:
        """``True`` if the mail API endpoint, key and sender are all set."""
        return bool(self.email_api_url and self.email_api_key and self.email_from_address)

    @property
    def shadow_configured(self) -> bool:
        """``True`` if an admin address for shadow digests is set."""
        return bool(self.admin_email)
