"""SQLite-based backfill window state tracker.

Tracks each window of a backfill through pending, running, completed and
failed. Enables resumable backfills, progress reporting and isolated retry
of failed windows.
"""

import sqlite3
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from glassline.backfill.windows import BackfillWindow
from glassline.decode import format_time

__all__ = ['BackfillTracker', 'WINDOW_STATUSES']

logger = logging.getLogger(__name__)

WINDOW_STATUSES = ("pending", "running", "completed", "failed")


class BackfillTracker:
    """Tracks backfill window state.

    **Database Schema:**

    SQLite table `backfill_windows` (one row per window):

    - extent_id: Window identity (also its extent id in the destination)
    - target_table: Destination table
    - window_start, window_end, closed: Ingestion-time range copied
    - creation_time: Historical creation-time tag
    - status: pending, running, completed, failed
    - attempts, rows_copied, error_message
    - created_at, updated_at

    **Resumability:**

    Completed windows are skipped on restart. Use `reset_failed()` to make
    failed windows pending again; they are then resubmitted with identical
    parameters.

    **Thread Safety:**

    All methods are thread-safe via internal locking.

    **Typical Usage:**

    Called by BackfillRunner. Can be queried for progress::

        tracker = BackfillTracker(db_path)
        tracker.register_window("Envelopes", window)
        if tracker.should_process("Envelopes", window):
            tracker.mark_running("Envelopes", window)
            ...
            tracker.mark_completed("Envelopes", window, rows=1200)
        tracker.get_statistics()
        tracker.close()
    """

    def __init__(self, db_path: Path | str):
        """Initialize tracker.

        Parameters
        ----------
        db_path : Path or str
            Path to SQLite database file. Created if doesn't exist.
            ``":memory:"`` keeps it in process.
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = None
        self._lock = threading.Lock()

        self._init_database()
        logger.info("Backfill tracker initialized: %s", self.db_path)

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self):
        conn = self._get_connection()

        with self._lock:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS backfill_windows (
                    extent_id TEXT NOT NULL,
                    target_table TEXT NOT NULL,
                    window_index INTEGER NOT NULL,
                    window_start TEXT NOT NULL,
                    window_end TEXT NOT NULL,
                    closed INTEGER NOT NULL,
                    creation_time TEXT NOT NULL,

                    status TEXT DEFAULT 'pending',
                    attempts INTEGER DEFAULT 0,
                    rows_copied INTEGER,
                    error_message TEXT,

                    created_at TEXT,
                    updated_at TEXT,
                    PRIMARY KEY (target_table, extent_id)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_window_status ON backfill_windows(status)")
            conn.commit()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def register_window(self, table: str, window: BackfillWindow) -> bool:
        """Register a window for tracking.

        Returns
        -------
        bool
            True if newly registered, False if already known.
        """
        conn = self._get_connection()

        with self._lock:
            cursor = conn.execute(
                "SELECT 1 FROM backfill_windows WHERE target_table = ? AND extent_id = ?",
                (table, window.extent_id),
            )
            if cursor.fetchone():
                return False

            now = self._now()
            conn.execute("""
                INSERT INTO backfill_windows
                (extent_id, target_table, window_index, window_start, window_end, closed,
                 creation_time, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
            """, (
                window.extent_id,
                table,
                window.index,
                format_time(window.start),
                format_time(window.end),
                int(window.closed),
                format_time(window.creation_time),
                now,
                now,
            ))
            conn.commit()

            logger.debug("Registered window %s for %s", window.label, table)
            return True

    def _set_status(self, table: str, window: BackfillWindow, status: str,
                    rows: Optional[int] = None, error: Optional[str] = None,
                    attempt: bool = False):
        conn = self._get_connection()
        with self._lock:
            conn.execute(f"""
                UPDATE backfill_windows
                SET status = ?,
                    rows_copied = COALESCE(?, rows_copied),
                    error_message = ?,
                    attempts = attempts + {1 if attempt else 0},
                    updated_at = ?
                WHERE target_table = ? AND extent_id = ?
            """, (status, rows, error, self._now(), table, window.extent_id))
            conn.commit()

    def mark_running(self, table: str, window: BackfillWindow):
        self._set_status(table, window, "running", attempt=True)

    def mark_completed(self, table: str, window: BackfillWindow, rows: int):
        self._set_status(table, window, "completed", rows=rows)
        logger.debug("Window %s completed: %d rows", window.label, rows)

    def mark_failed(self, table: str, window: BackfillWindow, error: str):
        self._set_status(table, window, "failed", error=error)

    def get_window_status(self, table: str, window: BackfillWindow) -> Optional[Dict]:
        conn = self._get_connection()

        with self._lock:
            row = conn.execute(
                "SELECT * FROM backfill_windows WHERE target_table = ? AND extent_id = ?",
                (table, window.extent_id),
            ).fetchone()
            return dict(row) if row else None

    def should_process(self, table: str, window: BackfillWindow) -> bool:
        """True unless the window already completed."""
        status = self.get_window_status(table, window)
        return status is None or status["status"] != "completed"

    def get_windows(self, table: Optional[str] = None,
                    status: Optional[str] = None) -> List[Dict]:
        """Window records, oldest first, optionally filtered.

        Raises
        ------
        ValueError
            If ``status`` is not a known window status.
        """
        if status is not None and status not in WINDOW_STATUSES:
            raise ValueError(f"Invalid status: {status}. Must be one of {list(WINDOW_STATUSES)}")

        query = "SELECT * FROM backfill_windows WHERE 1 = 1"
        params = []
        if table:
            query += " AND target_table = ?"
            params.append(table)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY window_start"

        conn = self._get_connection()
        with self._lock:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def get_statistics(self, table: Optional[str] = None) -> Dict:
        """Summary counts: total, per status, rows copied."""
        where_clause = "WHERE target_table = ?" if table else ""
        params = (table,) if table else ()

        conn = self._get_connection()
        with self._lock:
            row = conn.execute(f"""
                SELECT
                    COUNT(*) as total,
                    SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) as completed,
                    SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) as failed,
                    SUM(CASE WHEN status = 'running' THEN 1 ELSE 0 END) as running,
                    SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END) as pending,
                    SUM(rows_copied) as rows_copied
                FROM backfill_windows
                {where_clause}
            """, params).fetchone()
            stats = dict(row) if row else {}
        return {k: (v or 0) for k, v in stats.items()}

    def reset_failed(self, table: Optional[str] = None) -> int:
        """Reset failed windows to pending. Returns how many were reset."""
        conn = self._get_connection()

        with self._lock:
            if table:
                cursor = conn.execute("""
                    UPDATE backfill_windows
                    SET status = 'pending', error_message = NULL, updated_at = ?
                    WHERE status = 'failed' AND target_table = ?
                """, (self._now(), table))
            else:
                cursor = conn.execute("""
                    UPDATE backfill_windows
                    SET status = 'pending', error_message = NULL, updated_at = ?
                    WHERE status = 'failed'
                """, (self._now(),))
            conn.commit()

        logger.info("Reset %d failed window(s) to pending", cursor.rowcount)
        return cursor.rowcount

    def close(self):
        """Close database connection. Safe to call multiple times."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
