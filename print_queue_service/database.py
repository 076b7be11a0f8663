"""
Database management for the Print Queue Service.
Handles PostgreSQL (psycopg2) and SQLite connections, schema creation and
the app_settings key/value table.
"""
import psycopg2
import psycopg2.extras
import sqlite3
import logging
import os
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .errors import StorageFailure
from .models import utcnow

logger = logging.getLogger(__name__)

SQLITE_PREFIX = "sqlite:///"

# SQLite has no timestamp type; store ISO-8601 text and parse it back.
sqlite3.register_adapter(datetime, lambda value: value.isoformat(timespec="microseconds"))
sqlite3.register_converter("TIMESTAMPTZ", lambda raw: datetime.fromisoformat(raw.decode()))


class DatabaseCursor:
    """Thin cursor wrapper hiding paramstyle and row type differences."""

    def __init__(self, cursor, dialect: str):
        self._cursor = cursor
        self._dialect = dialect

    def execute(self, query: str, params: Iterable[Any] = ()):
        if self._dialect == "sqlite":
            query = query.replace("%s", "?")
        self._cursor.execute(query, tuple(params))

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    def fetchone(self) -> Optional[Dict[str, Any]]:
        row = self._cursor.fetchone()
        return dict(row) if row is not None else None

    def fetchall(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._cursor.fetchall()]


class Database:
    """
    Database manager for print jobs and runtime settings.
    Handles database initialization, connections and the settings table.
    """

    def __init__(self, db_url: Optional[str] = None, timeout: float = 10.0):
        """
        Initialize database connection URL and ensure tables are created.

        Args:
            db_url: postgresql:// DSN or sqlite:///path URL. Defaults to DATABASE_URL.
            timeout: Seconds to wait for a connection or a lock.
        """
        self.db_url = db_url or os.environ.get("DATABASE_URL")
        if not self.db_url:
            raise StorageFailure("DATABASE_URL environment variable not set.")

        self.timeout = timeout
        self.dialect = "sqlite" if self.db_url.startswith("sqlite:") else "postgresql"
        if self.dialect == "sqlite":
            self.sqlite_path = self.db_url[len(SQLITE_PREFIX):]
            if not self.db_url.startswith(SQLITE_PREFIX) or self.sqlite_path in ("", ":memory:"):
                raise StorageFailure(f"Unsupported SQLite URL {self.db_url!r}, a file path is required.")

        self._initialize_database()
        logger.info(f"Database initialized with {self.dialect}.")

    def _connect(self):
        if self.dialect == "sqlite":
            conn = sqlite3.connect(
                self.sqlite_path,
                timeout=self.timeout,
                detect_types=sqlite3.PARSE_DECLTYPES,
                isolation_level="IMMEDIATE",
            )
            conn.row_factory = sqlite3.Row
            return conn
        return psycopg2.connect(self.db_url, connect_timeout=int(self.timeout))

    @contextmanager
    def get_connection(self):
        """Provide a transactional scope around a series of operations."""
        conn = None
        try:
            conn = self._connect()
            yield conn
            conn.commit()
        except (psycopg2.Error, sqlite3.Error) as e:
            logger.error(f"Database transaction failed: {e}")
            if conn:
                conn.rollback()
            raise StorageFailure(f"Database transaction failed: {e}") from e
        except Exception:
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                conn.close()

    @contextmanager
    def cursor(self):
        """Open a transaction and yield a DatabaseCursor bound to it."""
        with self.get_connection() as conn:
            if self.dialect == "sqlite":
                raw_cursor = conn.cursor()
            else:
                raw_cursor = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield DatabaseCursor(raw_cursor, self.dialect)
            finally:
                raw_cursor.close()

    def _initialize_database(self):
        """Create database tables if they don't exist."""
        json_type = "JSONB" if self.dialect == "postgresql" else "TEXT"
        with self.cursor() as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS print_jobs (
                    id TEXT PRIMARY KEY,
                    device_id TEXT NOT NULL,
                    payload {json_type} NOT NULL,
                    status TEXT NOT NULL
                        CHECK (status IN ('pending', 'printing', 'completed', 'failed')),
                    retry_count INTEGER NOT NULL DEFAULT 0 CHECK (retry_count >= 0),
                    max_retries INTEGER NOT NULL DEFAULT 3 CHECK (max_retries >= 0),
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    printed_at TIMESTAMPTZ,
                    error_message TEXT,
                    next_retry_at TIMESTAMPTZ
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS app_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
            """)

            # Poll lookup (oldest pending per device) and reconciler scan
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_print_jobs_device_status "
                "ON print_jobs(device_id, status, created_at);"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_print_jobs_status_retry "
                "ON print_jobs(status, next_retry_at);"
            )

        logger.info("Database tables checked/created successfully")

    def get_setting(self, key: str) -> Optional[str]:
        """Read one value from app_settings."""
        with self.cursor() as cursor:
            cursor.execute("SELECT value FROM app_settings WHERE key = %s", (key,))
            row = cursor.fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str):
        """Insert or update one value in app_settings."""
        with self.cursor() as cursor:
            cursor.execute("""
                INSERT INTO app_settings (key, value, updated_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (key) DO UPDATE SET
                    value = EXCLUDED.value,
                    updated_at = EXCLUDED.updated_at
            """, (key, value, utcnow()))
        logger.info(f"Setting {key} updated to {value!r}")
