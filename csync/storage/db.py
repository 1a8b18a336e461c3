"""
SQLite database module for sync run state.

Stores the reconciliation watermark and a history of sync runs.
"""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

# Watermark used before the first successful run
DEFAULT_WATERMARK = datetime(1972, 1, 1, tzinfo=timezone.utc)

RUN_STATUS_RUNNING = "running"
RUN_STATUS_COMPLETED = "completed"
RUN_STATUS_FAILED = "failed"

SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY,
    key TEXT NOT NULL,
    value TEXT,
    updated_at TEXT,
    UNIQUE(key)
);

CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY,
    mode TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    changes INTEGER DEFAULT 0,
    summary TEXT,
    error TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_runs_started ON sync_runs(started_at);
"""

WATERMARK_KEY = "watermark"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncDatabase:
    """
    SQLite database manager for sync run state.

    Usage:
        db = SyncDatabase('/path/to/sync.db')
        db.initialize()

        watermark = db.get_watermark()
        run_id = db.start_run("sync")
        ...
        db.finish_run(run_id, RUN_STATUS_COMPLETED, changes=12)
        db.set_watermark(new_watermark)

        # Or use in-memory for testing:
        db = SyncDatabase(':memory:')
    """

    def __init__(self, db_path: str):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        In-memory databases share one connection so the schema persists
        across operations; file databases open a new connection each time.
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(":memory:")
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success, rolls back on error.
        """
        conn = self._get_connection()
        is_shared = self.db_path == ":memory:"
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not is_shared:
                conn.close()

    def initialize(self) -> None:
        """Create the tables if they don't exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    # =========================================================================
    # Watermark
    # =========================================================================

    def get_watermark(self) -> datetime:
        """
        Get the time up to which edits have already been reconciled.

        Returns:
            The stored watermark, or DEFAULT_WATERMARK before the first run
        """
        with self.connection() as conn:
            row = conn.execute(
                "SELECT value FROM sync_state WHERE key = ?", (WATERMARK_KEY,)
            ).fetchone()

        if row is None or not row["value"]:
            return DEFAULT_WATERMARK

        watermark = datetime.fromisoformat(row["value"])
        if watermark.tzinfo is None:
            watermark = watermark.replace(tzinfo=timezone.utc)
        return watermark

    def set_watermark(self, watermark: datetime) -> None:
        """Persist a new watermark (naive datetimes are taken as UTC)."""
        if watermark.tzinfo is None:
            watermark = watermark.replace(tzinfo=timezone.utc)

        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (WATERMARK_KEY, watermark.isoformat(), _now()),
            )

    # =========================================================================
    # Run history
    # =========================================================================

    def start_run(self, mode: str) -> int:
        """
        Record the start of a run.

        Args:
            mode: "sync", "init" or "restore"

        Returns:
            Identifier of the run row
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "INSERT INTO sync_runs (mode, status, started_at) VALUES (?, ?, ?)",
                (mode, RUN_STATUS_RUNNING, _now()),
            )
            return int(cursor.lastrowid or 0)

    def finish_run(
        self,
        run_id: int,
        status: str,
        changes: int = 0,
        summary: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Record the outcome of a run."""
        with self.connection() as conn:
            conn.execute(
                """
                UPDATE sync_runs
                SET status = ?, completed_at = ?, changes = ?, summary = ?, error = ?
                WHERE id = ?
                """,
                (status, _now(), changes, summary, error, run_id),
            )

    def get_last_run(self, status: Optional[str] = None) -> Optional[dict[str, Any]]:
        """
        Get the most recent run, optionally restricted to one status.

        Returns:
            Dictionary with the run's columns, or None if there is none
        """
        query = "SELECT * FROM sync_runs"
        params: tuple[str, ...] = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status,)
        query += " ORDER BY id DESC LIMIT 1"

        with self.connection() as conn:
            row = conn.execute(query, params).fetchone()
            return dict(row) if row else None

    def get_run_count(self) -> int:
        """Get the number of recorded runs."""
        with self.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM sync_runs").fetchone()
            return int(row["count"])

    # =========================================================================
    # Maintenance
    # =========================================================================

    def clear_all_state(self) -> None:
        """Clear the watermark and run history (full reset)."""
        with self.connection() as conn:
            conn.execute("DELETE FROM sync_state")
            conn.execute("DELETE FROM sync_runs")

    def vacuum(self) -> None:
        """Vacuum the database to reclaim space."""
        with self.connection() as conn:
            conn.execute("VACUUM")
