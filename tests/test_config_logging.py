"""
Tests for settings, the error catalog and log context
"""
import json
import logging

from portcullis.core.config import Settings
from portcullis.core.errors import (
    ERROR_CATALOG,
    CredentialShapeError,
    DispatchError,
    ErrorCategory,
    StatusTransitionError,
)
from portcullis.core.structured_logging import (
    ContextFilter,
    JsonFormatter,
    filter_sensitive_fields,
    with_correlation_id,
    with_sync_id,
)


class TestSettings:
    def test_env_prefix_and_aliases(self, monkeypatch):
        monkeypatch.setenv("PORTCULLIS_DISPATCH_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_x")
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db/app")
        settings = Settings(_env_file=None)
        assert settings.dispatch_max_attempts == 5
        assert settings.github_token == "ghp_x"
        assert settings.async_database_url == "postgresql+asyncpg://u:p@db/app"

    def test_sqlite_url_untouched(self, settings):
        assert settings.async_database_url.startswith("sqlite+aiosqlite://")


class TestErrorCatalog:
    def test_codes_are_catalogued(self):
        assert "PCL-4001" in ERROR_CATALOG
        assert all(code.startswith("PCL-") for code in ERROR_CATALOG)

    def test_catalog_drives_status_and_category(self):
        error = DispatchError("HTTP 404: Not Found", attempts=1, status_code=404)
        assert error.message == "HTTP 404: Not Found"
        assert error.http_status == 422
        assert error.category == ErrorCategory.EXTERNAL

    def test_message_formatted_from_catalog(self):
        error = StatusTransitionError("completed", "active")
        assert error.message == "Cannot move sync from completed to active"
        assert error.http_status == 409

    def test_credential_message_lists_every_problem(self):
        error = CredentialShapeError("redshift", ["user"], invalid={"port": "must be a port number (1-65535)"})
        assert error.message == (
            "Invalid credentials for link type redshift: missing user; port must be a port number (1-65535)"
        )


class TestLogContext:
    def _record(self, **extra):
        record = logging.makeLogRecord({"name": "portcullis.test", "msg": "hello", "levelname": "INFO", **extra})
        ContextFilter().filter(record)
        return record

    def test_context_ids_on_records(self):
        with with_correlation_id("req-9"), with_sync_id("sync-1"):
            record = self._record()
        assert record.correlation_id == "req-9"
        assert record.sync_id == "sync-1"
        assert self._record().sync_id == "-"

    def test_timestamp_is_utc_aware(self):
        assert self._record().timestamp.endswith("+00:00")

    def test_json_formatter_includes_extra(self):
        with with_sync_id("sync-2"):
            record = self._record(event="dispatch_retry", attempt=2)
        line = json.loads(JsonFormatter().format(record))
        assert line["sync_id"] == "sync-2"
        assert line["event"] == "dispatch_retry"
        assert line["attempt"] == 2

    def test_sensitive_fields_redacted(self):
        filtered = filter_sensitive_fields(
            {"host": "h", "password": "p", "nested": {"api_key": "k", "mode": "stream"}}
        )
        assert filtered == {
            "host": "h",
            "password": "***REDACTED***",
            "nested": {"api_key": "***REDACTED***", "mode": "stream"},
        }
