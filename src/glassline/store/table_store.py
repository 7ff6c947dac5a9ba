"""SQLite-backed append-only table store.

Holds the raw table, the envelope store and the typed target tables.
Provides the transactional and extent-ledger primitives the cascade engine
relies on for atomic, at-most-once propagation.
"""

import json
import sqlite3
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pandas as pd

from glassline.decode import format_time
from glassline.contracts.base import require
from glassline.contracts.failure import ContractViolation, SchemaMismatchError, UnknownTableError
from glassline.store.schema import (
    COLUMN_KINDS,
    conform_frame,
    from_db_rows,
    to_db_records,
    validate_schema,
)

__all__ = ['TableStore']

logger = logging.getLogger(__name__)

_META_COLUMNS = ("_extent_id", "_ingestion_time", "_creation_time")


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class TableStore:
    """Append-only tables with extent tracking.

    Every append is an *extent*: a batch of rows sharing an ``extent_id``,
    an ingestion time (stamped by the store clock) and a creation time
    (defaults to the ingestion time; backfill passes the historical date).
    The ``_extents`` ledger has one row per ``(table, extent_id)`` and is
    what makes appends idempotent.

    **Database Schema:**

    - ``_tables``: table name, JSON schema, creation time
    - ``_extents``: table name, extent id, row count, ingestion/creation time
    - ``_functions`` and ``_policies``: the declared catalog, so a new process
      sees what the last setup script declared
    - one SQL table per logical table: declared columns plus
      ``_extent_id``, ``_ingestion_time``, ``_creation_time``

    **Transactions:**

    ``transaction()`` is reentrant on the owning thread: nested calls join the
    outer transaction, and only the outermost one commits or rolls back. All
    public methods take the store lock, so writers are serialized in arrival
    order and readers never see a half-applied cascade step.

    Typical usage::

        store = TableStore(db_path)
        store.create_table("Envelopes", ENVELOPE_SCHEMA)
        with store.transaction():
            store.append("Envelopes", df, extent_id="batch-0001")
        store.row_count("Envelopes")
        store.close()
    """

    def __init__(self, db_path: Path | str, clock: Optional[Callable[[], datetime]] = None):
        """Initialize store.

        Parameters
        ----------
        db_path : Path or str
            Path to SQLite database file, created if it doesn't exist.
            ``":memory:"`` keeps everything in process.
        clock : callable, optional
            Returns the current UTC datetime; used for ingestion times.
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._conn = None
        self._lock = threading.RLock()
        self._depth = 0
        self._schemas: Dict[str, dict] = {}

        self._init_database()
        logger.info("Table store initialized: %s", self.db_path)

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            # Autocommit mode; transactions are explicit in transaction()
            self._conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self):
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS _tables (
                    name TEXT PRIMARY KEY,
                    schema_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS _extents (
                    table_name TEXT NOT NULL,
                    extent_id TEXT NOT NULL,
                    row_count INTEGER NOT NULL,
                    ingestion_time TEXT NOT NULL,
                    creation_time TEXT NOT NULL,
                    PRIMARY KEY (table_name, extent_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS _functions (
                    name TEXT PRIMARY KEY,
                    docstring TEXT NOT NULL,
                    folder TEXT NOT NULL,
                    output_schema_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS _policies (
                    target TEXT PRIMARY KEY,
                    source TEXT NOT NULL,
                    function TEXT NOT NULL,
                    enabled INTEGER NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            for row in conn.execute("SELECT name, schema_json FROM _tables"):
                self._schemas[row["name"]] = json.loads(row["schema_json"])

    @contextmanager
    def transaction(self):
        """Open (or join) the store transaction.

        Yields the connection. The outermost transaction commits on success
        and rolls back on any exception, which is re-raised.
        """
        with self._lock:
            conn = self._get_connection()
            outermost = self._depth == 0
            if outermost:
                conn.execute("BEGIN IMMEDIATE")
                schemas_before = dict(self._schemas)
            self._depth += 1
            try:
                yield conn
            except BaseException:
                self._depth -= 1
                if outermost:
                    conn.execute("ROLLBACK")
                    self._schemas = schemas_before
                raise
            else:
                self._depth -= 1
                if outermost:
                    conn.execute("COMMIT")

    # ========================================================================
    # Schema management
    # ========================================================================

    def table_exists(self, name: str) -> bool:
        with self._lock:
            return name in self._schemas

    def tables(self) -> List[str]:
        with self._lock:
            return sorted(self._schemas)

    def schema(self, name: str) -> dict:
        """Declared schema of ``name`` (copy).

        Raises
        ------
        UnknownTableError
            If the table does not exist.
        """
        with self._lock:
            if name not in self._schemas:
                raise UnknownTableError(f"Table '{name}' does not exist")
            return dict(self._schemas[name])

    def create_table(self, name: str, schema: dict) -> bool:
        """Create ``name`` with ``schema``.

        Returns
        -------
        bool
            True if created, False if it already existed with the same schema.

        Raises
        ------
        SchemaMismatchError
            If the table exists with a different schema.
        """
        schema = validate_schema(schema)
        with self.transaction() as conn:
            if name in self._schemas:
                require(
                    list(self._schemas[name].items()) == list(schema.items()),
                    f"Table '{name}' already exists with schema "
                    f"{list(self._schemas[name].items())}, not {list(schema.items())}",
                    SchemaMismatchError,
                )
                return False

            col_defs = [f"{_quote(col)} {COLUMN_KINDS[kind]}" for col, kind in schema.items()]
            col_defs += [f"{_quote(col)} TEXT NOT NULL" for col in _META_COLUMNS]
            conn.execute(f"CREATE TABLE {_quote(name)} ({', '.join(col_defs)})")
            conn.execute(
                f"CREATE INDEX {_quote('idx_' + name + '_ingestion')} "
                f"ON {_quote(name)} (_ingestion_time)"
            )
            conn.execute(
                "INSERT INTO _tables (name, schema_json, created_at) VALUES (?, ?, ?)",
                (name, json.dumps(schema), format_time(self._clock())),
            )
            self._schemas[name] = schema

        logger.info("Created table %s (%d columns)", name, len(schema))
        return True

    def drop_table(self, name: str) -> bool:
        """Drop ``name`` and its extents. Returns False if it did not exist."""
        with self.transaction() as conn:
            if name not in self._schemas:
                return False
            conn.execute(f"DROP TABLE {_quote(name)}")
            conn.execute("DELETE FROM _tables WHERE name = ?", (name,))
            conn.execute("DELETE FROM _extents WHERE table_name = ?", (name,))
            del self._schemas[name]

        logger.info("Dropped table %s", name)
        return True

    def recreate_table(self, name: str, schema: dict) -> None:
        """Drop (if present) and create ``name`` with ``schema``."""
        with self.transaction():
            self.drop_table(name)
            self.create_table(name, schema)

    def rename_table(self, old: str, new: str) -> None:
        """Rename a table, keeping its schema, rows and extents.

        Raises
        ------
        UnknownTableError
            If ``old`` does not exist.
        ContractViolation
            If ``new`` already exists.
        """
        with self.transaction() as conn:
            if old not in self._schemas:
                raise UnknownTableError(f"Cannot rename '{old}': table does not exist")
            if new in self._schemas:
                raise ContractViolation(f"Cannot rename '{old}' to '{new}': target exists")
            conn.execute(f"ALTER TABLE {_quote(old)} RENAME TO {_quote(new)}")
            # Index names track the table name
            conn.execute(f"DROP INDEX IF EXISTS {_quote('idx_' + old + '_ingestion')}")
            conn.execute(
                f"CREATE INDEX {_quote('idx_' + new + '_ingestion')} "
                f"ON {_quote(new)} (_ingestion_time)"
            )
            conn.execute("UPDATE _tables SET name = ? WHERE name = ?", (new, old))
            conn.execute("UPDATE _extents SET table_name = ? WHERE table_name = ?", (new, old))
            conn.execute("UPDATE _policies SET target = ? WHERE target = ?", (new, old))
            conn.execute("UPDATE _policies SET source = ? WHERE source = ?", (new, old))
            self._schemas[new] = self._schemas.pop(old)

        logger.info("Renamed table %s -> %s", old, new)

    # ========================================================================
    # Extents
    # ========================================================================

    @staticmethod
    def new_extent_id() -> str:
        return uuid.uuid4().hex

    def has_extent(self, table: str, extent_id: str) -> bool:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT 1 FROM _extents WHERE table_name = ? AND extent_id = ?",
                (table, extent_id),
            ).fetchone()
            return row is not None

    def get_extent(self, table: str, extent_id: str) -> Optional[Dict]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT * FROM _extents WHERE table_name = ? AND extent_id = ?",
                (table, extent_id),
            ).fetchone()
            return dict(row) if row else None

    def append(self, table: str, df: pd.DataFrame, extent_id: str,
               creation_time: Optional[datetime] = None) -> int:
        """Append ``df`` to ``table`` as extent ``extent_id``.

        Parameters
        ----------
        table : str
            Existing table name.
        df : pd.DataFrame
            Rows to append; must contain every schema column.
        extent_id : str
            Batch identity. Appending an id already in the ledger is a no-op.
        creation_time : datetime, optional
            Creation-time tag for the extent; defaults to ingestion time.

        Returns
        -------
        int
            Rows written (0 when the extent was already present).

        Raises
        ------
        UnknownTableError
            If the table does not exist.
        SchemaMismatchError
            If ``df`` lacks schema columns.
        """
        schema = self.schema(table)
        frame = conform_frame(df, schema)

        with self.transaction() as conn:
            if self.has_extent(table, extent_id):
                logger.debug("Extent %s already in %s, skipping", extent_id, table)
                return 0

            ingestion_time = format_time(self._clock())
            creation = format_time(creation_time) if creation_time else ingestion_time
            records = [
                rec + (extent_id, ingestion_time, creation)
                for rec in to_db_records(frame, schema)
            ]
            columns = list(schema) + list(_META_COLUMNS)
            placeholders = ", ".join("?" * len(columns))
            if records:
                conn.executemany(
                    f"INSERT INTO {_quote(table)} ({', '.join(_quote(c) for c in columns)}) "
                    f"VALUES ({placeholders})",
                    records,
                )
            conn.execute(
                "INSERT INTO _extents (table_name, extent_id, row_count, ingestion_time, creation_time) "
                "VALUES (?, ?, ?, ?, ?)",
                (table, extent_id, len(records), ingestion_time, creation),
            )

        logger.debug("Appended %d rows to %s (extent %s)", len(records), table, extent_id)
        return len(records)

    # ========================================================================
    # Reads
    # ========================================================================

    def _select(self, table: str, where: str = "", params: tuple = (),
                with_meta: bool = False) -> pd.DataFrame:
        schema = self.schema(table)
        columns = list(schema) + (list(_META_COLUMNS) if with_meta else [])
        query = (
            f"SELECT {', '.join(_quote(c) for c in columns)} FROM {_quote(table)} "
            f"{where} ORDER BY rowid"
        )
        with self._lock:
            rows = self._get_connection().execute(query, params).fetchall()

        frame = from_db_rows([tuple(r)[:len(schema)] for r in rows], schema)
        if with_meta:
            for i, meta in enumerate(_META_COLUMNS):
                frame[meta] = [r[len(schema) + i] for r in rows]
        return frame

    def read(self, table: str, extent_id: Optional[str] = None,
             with_meta: bool = False) -> pd.DataFrame:
        """Read all rows of ``table`` (or one extent) in append order."""
        if extent_id is None:
            return self._select(table, with_meta=with_meta)
        return self._select(table, "WHERE _extent_id = ?", (extent_id,), with_meta)

    def read_ingested_between(self, table: str, start: datetime, end: datetime,
                              closed: bool = False) -> pd.DataFrame:
        """Rows whose ingestion time is in ``[start, end)`` (``[start, end]`` if closed).

        This is the read side of a cross-store copy: backfill reads a mirror
        store through it.
        """
        op = "<=" if closed else "<"
        return self._select(
            table,
            f"WHERE _ingestion_time >= ? AND _ingestion_time {op} ?",
            (format_time(start), format_time(end)),
        )

    # ========================================================================
    # Catalog (functions and update policies)
    # ========================================================================

    def save_function(self, name: str, docstring: str, folder: str, output_schema: dict) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO _functions "
                "(name, docstring, folder, output_schema_json, updated_at) VALUES (?, ?, ?, ?, ?)",
                (name, docstring, folder, json.dumps(output_schema), format_time(self._clock())),
            )

    def function_catalog(self) -> Dict[str, Dict]:
        """``{name: {docstring, folder, output_schema}}`` of declared functions."""
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT name, docstring, folder, output_schema_json FROM _functions ORDER BY name"
            ).fetchall()
        return {
            row["name"]: {
                "docstring": row["docstring"],
                "folder": row["folder"],
                "output_schema": json.loads(row["output_schema_json"]),
            }
            for row in rows
        }

    def save_policy(self, target: str, source: str, function: str, enabled: bool) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO _policies (target, source, function, enabled, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (target, source, function, int(enabled), format_time(self._clock())),
            )

    def delete_policy(self, target: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM _policies WHERE target = ?", (target,))
            return cursor.rowcount > 0

    def load_policies(self) -> List[Dict]:
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT target, source, function, enabled FROM _policies ORDER BY target"
            ).fetchall()
        return [
            {"target": r["target"], "source": r["source"],
             "function": r["function"], "enabled": bool(r["enabled"])}
            for r in rows
        ]

    # ========================================================================
    # Diagnostics
    # ========================================================================

    def row_count(self, table: str) -> int:
        self.schema(table)
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT COUNT(*) FROM {_quote(table)}"
            ).fetchone()
            return row[0]

    def rows_ingested_since(self, table: str, window: timedelta) -> int:
        """Freshness check: rows ingested within the trailing ``window``."""
        self.schema(table)
        since = format_time(self._clock() - window)
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT COUNT(*) FROM {_quote(table)} WHERE _ingestion_time >= ?",
                (since,),
            ).fetchone()
            return row[0]

    def extent_count(self, table: str) -> int:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT COUNT(*) FROM _extents WHERE table_name = ?", (table,)
            ).fetchone()
            return row[0]

    def close(self):
        """Close database connection. Safe to call multiple times."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
