"""Unit tests for settings loading, logging configuration and the run context."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from idxalerts.core import configure_logging
from idxalerts.core.logging_config import RUN_ID_CTX, JsonFormatter, RunContextFilter
from idxalerts.core.run_context import RunContext
from idxalerts.core.settings import MAX_SEARCH_RESULTS, Settings


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self, clean_env) -> None:
        s = Settings()
        assert s.timezone == "America/Vancouver"
        assert s.max_search_results == MAX_SEARCH_RESULTS
        assert s.max_concurrent_searches == 1
        assert s.email_from_name == "PREC Real Estate"
        assert s.email_configured is False
        assert s.shadow_configured is False
        assert s.dry_run is False

    def test_env_vars_are_read(self, clean_env, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EMAIL_API_URL", "https://mail.example.com/send")
        monkeypatch.setenv("EMAIL_API_KEY", "key")
        monkeypatch.setenv("EMAIL_FROM_ADDRESS", "alerts@example.com")
        monkeypatch.setenv("ADMIN_EMAIL", "admin@example.com")
        monkeypatch.setenv("APP_URL", "https://portal.example.com/")
        monkeypatch.setenv("MAX_CONCURRENT_SEARCHES", "4")

        s = Settings()

        assert s.email_configured is True
        assert s.shadow_configured is True
        assert s.app_url == "https://portal.example.com"
        assert s.max_concurrent_searches == 4

    def test_unknown_timezone_is_rejected(self, clean_env) -> None:
        with pytest.raises(ValidationError):
            Settings(timezone="Mars/Olympus_Mons")

    def test_result_cap_cannot_exceed_hard_limit(self, clean_env) -> None:
        with pytest.raises(ValidationError):
            Settings(max_search_results=MAX_SEARCH_RESULTS + 1)

    def test_zero_concurrency_is_rejected(self, clean_env) -> None:
        with pytest.raises(ValidationError):
            Settings(max_concurrent_searches=0)

    @pytest.mark.parametrize(("raw", "expected"), [("debug", "DEBUG"), ("Warning", "WARNING")])
    def test_log_level_is_normalised(self, clean_env, raw: str, expected: str) -> None:
        assert Settings(log_level=raw).log_level == expected

    def test_bad_log_format_is_rejected(self, clean_env) -> None:
        with pytest.raises(ValidationError):
            Settings(log_format="xml")

    def test_derived_paths_and_zone(self, clean_env, tmp_path: Path) -> None:
        s = Settings(database_path=str(tmp_path / "x.db"), timezone="UTC")
        assert s.database_path_resolved == (tmp_path / "x.db").resolve()
        assert s.tzinfo.key == "UTC"


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def _record(msg: str = "hello", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("idxalerts.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogging:
    def test_unknown_level_raises(self) -> None:
        with pytest.raises(ValueError):
            configure_logging(level="LOUD", force=True)

    def test_unknown_format_raises(self) -> None:
        with pytest.raises(ValueError):
            configure_logging(fmt="yaml", force=True)

    def test_json_formatter_shape(self) -> None:
        record = _record(event="BATCH_START", run_id="abc", search_id="s-1")
        payload = json.loads(JsonFormatter().format(record))
        assert payload["level"] == "INFO"
        assert payload["logger"] == "idxalerts.test"
        assert payload["message"] == "hello"
        assert payload["run_id"] == "abc"
        assert payload["event"] == "BATCH_START"
        assert payload["extra"] == {"search_id": "s-1"}
        assert payload["ts"].endswith("Z")

    def test_json_formatter_without_event(self) -> None:
        payload = json.loads(JsonFormatter().format(_record()))
        assert payload["event"] is None
        assert payload["run_id"] == "-"
        assert payload["extra"] == {}

    def test_run_context_filter_injects_run_id(self) -> None:
        record = _record()
        token = RUN_ID_CTX.set("deadbeef")
        try:
            assert RunContextFilter().filter(record) is True
        finally:
            RUN_ID_CTX.reset(token)
        assert record.run_id == "deadbeef"

    def test_run_id_defaults_to_dash(self) -> None:
        record = _record()
        RunContextFilter().filter(record)
        assert record.run_id == "-"

    def test_json_mode_installs_json_formatter(self) -> None:
        configure_logging(level="INFO", fmt="json", force=True)
        handler = logging.getLogger().handlers[0]
        assert isinstance(handler.formatter, JsonFormatter)


# ---------------------------------------------------------------------------
# RunContext
# ---------------------------------------------------------------------------


class TestRunContext:
    def test_live_by_default(self) -> None:
        ctx = RunContext()
        assert ctx.should_notify is True
        assert ctx.mode_label == "live"

    def test_dry_run(self) -> None:
        ctx = RunContext(dry_run=True)
        assert ctx.should_notify is False
        assert "dry-run" in str(ctx)
