"""
Unit tests for database operations and runtime settings.
SQLite tests always run; the PostgreSQL test needs DATABASE_URL pointing at
a PostgreSQL server.
"""
import pytest
import os
import psycopg2
from unittest.mock import patch
from dotenv import load_dotenv

# Load environment variables for the tests
load_dotenv()

from print_queue_service.database import Database
from print_queue_service.errors import StorageFailure
from print_queue_service.job_store import JobStore
from print_queue_service.models import PrintJob, PrintJobStatus
from print_queue_service.runtime_settings import (
    RETRY_ATTEMPTS_KEY, RETRY_DELAY_MINUTES_KEY, RETRY_ENABLED_KEY, RuntimeSettings
)

POSTGRES_URL = os.environ.get("DATABASE_URL", "")


class TestDatabase:
    """Test cases for the SQLite backed database."""

    def test_tables_created(self, database):
        with database.cursor() as cursor:
            cursor.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            tables = {row["name"] for row in cursor.fetchall()}

        assert {"print_jobs", "app_settings"} <= tables

    def test_initialization_is_idempotent(self, sqlite_url, database):
        database.set_setting("print_retry_enabled", "false")

        again = Database(sqlite_url)

        assert again.get_setting("print_retry_enabled") == "false"

    def test_setting_upsert(self, database):
        assert database.get_setting("missing") is None

        database.set_setting("print_retry_attempts", "3")
        database.set_setting("print_retry_attempts", "5")

        assert database.get_setting("print_retry_attempts") == "5"

    def test_status_check_constraint(self, database):
        with pytest.raises(StorageFailure):
            with database.cursor() as cursor:
                cursor.execute(
                    "INSERT INTO print_jobs (id, device_id, payload, status, created_at, updated_at) "
                    "VALUES (%s, %s, %s, %s, %s, %s)",
                    ("job-1", "D1", "{}", "lost", "2025-01-01", "2025-01-01"),
                )

    def test_failed_transaction_rolls_back(self, database):
        with pytest.raises(StorageFailure):
            with database.cursor() as cursor:
                cursor.execute(
                    "INSERT INTO app_settings (key, value, updated_at) VALUES (%s, %s, %s)",
                    ("print_retry_enabled", "false", "2025-01-01"),
                )
                cursor.execute("SELECT * FROM no_such_table")

        assert database.get_setting("print_retry_enabled") is None

    def test_other_errors_propagate_unwrapped(self, database):
        with pytest.raises(KeyError):
            with database.cursor():
                raise KeyError("boom")

    def test_missing_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(StorageFailure, match="DATABASE_URL"):
            Database()

    @pytest.mark.parametrize("url", ["sqlite:///:memory:", "sqlite://relative.db", "sqlite:///"])
    def test_unsupported_sqlite_url(self, url):
        with pytest.raises(StorageFailure):
            Database(url)

    @patch('print_queue_service.database.psycopg2.connect')
    def test_postgres_connection_error_wrapped(self, mock_connect):
        mock_connect.side_effect = psycopg2.OperationalError("could not connect to server")

        with pytest.raises(StorageFailure, match="could not connect"):
            Database("postgresql://printer@localhost:1/print_queue")


class TestRuntimeSettings:
    """Test cases for operator settings."""

    def test_defaults(self, database):
        settings = RuntimeSettings(database, default_max_retries=4)

        assert settings.retry_enabled() is True
        assert settings.max_retries() == 4
        assert settings.retry_delay_seconds() is None

    def test_setters_round_trip(self, runtime_settings):
        runtime_settings.set_retry_enabled(False)
        runtime_settings.set_max_retries(6)
        runtime_settings.set_retry_delay_minutes(2)

        assert runtime_settings.retry_enabled() is False
        assert runtime_settings.max_retries() == 6
        assert runtime_settings.retry_delay_seconds() == 120

    def test_values_read_fresh(self, database, runtime_settings):
        assert runtime_settings.retry_enabled() is True

        database.set_setting(RETRY_ENABLED_KEY, "false")

        assert runtime_settings.retry_enabled() is False

    def test_invalid_stored_values_use_defaults(self, database, runtime_settings):
        database.set_setting(RETRY_ATTEMPTS_KEY, "many")
        database.set_setting(RETRY_DELAY_MINUTES_KEY, "-5")

        assert runtime_settings.max_retries() == 3
        assert runtime_settings.retry_delay_seconds() is None

    def test_setter_validation(self, runtime_settings):
        with pytest.raises(ValueError):
            runtime_settings.set_max_retries(-1)
        with pytest.raises(ValueError):
            runtime_settings.set_retry_delay_minutes(0)


@pytest.mark.skipif(not POSTGRES_URL.startswith("postgres"), reason="PostgreSQL DATABASE_URL not set")
def test_postgres_job_lifecycle():
    """Run one job through the store against a real PostgreSQL server."""
    db = Database(POSTGRES_URL)
    with db.cursor() as cursor:
        cursor.execute("DELETE FROM print_jobs WHERE device_id = %s", ("pg-test-device",))
    store = JobStore(db)

    job = store.create_job(PrintJob(device_id="pg-test-device", payload={"request": "data"}))
    claimed = store.claim_next_job("pg-test-device")
    failed = store.transition(
        claimed.id, PrintJobStatus.PRINTING, PrintJobStatus.FAILED, error_message="jam"
    )

    assert claimed.id == job.id
    assert failed.status == PrintJobStatus.FAILED
    assert store.get_job(job.id).payload == {"request": "data"}
