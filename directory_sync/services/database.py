"""
Adaptive-schema SQLite store for synced directory records.

Tables for synced resources are (re)created from the schema inferred from
the incoming batch. Reads go through an in-memory cache that is hydrated
from the database on first access. An append-only ``sync_status`` table
keeps the history of sync runs.
"""
import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from ..errors import SchemaError
from .config import SyncSettings
from .models import SyncStatus, utc_now_iso
from .schema import (
    ColumnType,
    Record,
    Schema,
    build_schema,
    deserialize_row,
    serialize_record,
)


log = logging.getLogger(__name__)

USERS_TABLE = "users"
DEVICES_TABLE = "devices"
SYNC_STATUS_TABLE = "sync_status"
SYNCED_AT_COLUMN = "syncedAt"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _quote(identifier: str) -> str:
    """Quote an SQL identifier taken from record data."""
    return '"' + identifier.replace('"', '""') + '"'


def _check_table_name(table: str) -> str:
    if not _IDENTIFIER.match(table):
        raise SchemaError(f"Invalid table name: {table!r}")
    return table


class DirectoryStore:
    """
    Persistence and read cache for synced users and devices.

    The store is the only writer of synced data. Callers own its lifecycle:
    call ``init()`` before use and ``shutdown()`` when done.
    """

    def __init__(self, settings: SyncSettings, db_path: Optional[Path] = None):
        self.settings = settings
        self.db_path = Path(db_path) if db_path else settings.database_path
        self._cache: Dict[str, List[Record]] = {USERS_TABLE: [], DEVICES_TABLE: []}
        self._hydrated: set = set()
        self._status: Optional[SyncStatus] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection context manager."""
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def init(self) -> None:
        """Create the data directory and the sync status log."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {SYNC_STATUS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    lastSyncTime TEXT NOT NULL,
                    usersCount INTEGER NOT NULL DEFAULT 0,
                    devicesCount INTEGER NOT NULL DEFAULT 0,
                    success INTEGER NOT NULL DEFAULT 0,
                    error TEXT,
                    duration_ms INTEGER,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()
        self._status = self._read_latest_status()
        log.info("Directory store initialized at %s", self.db_path)

    def shutdown(self) -> None:
        """Drop in-memory state. The database file is left in place."""
        self._cache = {USERS_TABLE: [], DEVICES_TABLE: []}
        self._hydrated.clear()
        self._status = None
        log.info("Directory store shut down")

    # ------------------------------------------------------------------
    # Adaptive schema persistence
    # ------------------------------------------------------------------

    def build_schema(self, table: str, records: Sequence[Record]) -> Schema:
        return build_schema(_check_table_name(table), records, reserved=(SYNCED_AT_COLUMN,))

    def materialize(self, schema: Schema, conn: Optional[sqlite3.Connection] = None) -> None:
        """
        Drop and recreate the table for ``schema`` plus a ``syncedAt`` column.

        This is a full rebuild, not a migration: columns absent from the
        current schema are lost.
        """
        table = _check_table_name(schema.table)
        definitions = []
        for name, column_type in schema.columns:
            definition = f"{_quote(name)} {column_type.sql}"
            if name == schema.primary_key:
                definition += " PRIMARY KEY"
            definitions.append(definition)
        definitions.append(f"{_quote(SYNCED_AT_COLUMN)} TEXT NOT NULL")

        if conn is None:
            with self.connection() as own:
                self._recreate(own, table, definitions)
                own.commit()
        else:
            self._recreate(conn, table, definitions)

    def _recreate(self, conn: sqlite3.Connection, table: str, definitions: List[str]) -> None:
        conn.execute(f"DROP TABLE IF EXISTS {_quote(table)}")
        conn.execute(f"CREATE TABLE {_quote(table)} ({', '.join(definitions)})")

    def persist(self, table: str, records: Sequence[Record]) -> int:
        """
        Replace the contents of ``table`` with ``records``.

        An empty batch is a no-op since no schema can be inferred from it.
        Returns the number of rows written.

        Raises:
            SchemaError: Invalid table name or colliding field names
        """
        if not records:
            log.debug("Skipping persist for %s: empty batch", table)
            return 0
        schema = self.build_schema(table, records)

        synced_at = utc_now_iso()
        columns = schema.field_names + [SYNCED_AT_COLUMN]
        placeholders = ", ".join("?" for _ in columns)
        insert = (
            f"INSERT INTO {_quote(table)} ({', '.join(_quote(c) for c in columns)}) "
            f"VALUES ({placeholders})"
        )
        rows = [serialize_record(schema, record) + [synced_at] for record in records]

        with self.connection() as conn:
            try:
                # DDL does not open an implicit transaction in sqlite3.
                conn.execute("BEGIN")
                self.materialize(schema, conn)
                conn.execute(f"DELETE FROM {_quote(table)}")
                conn.executemany(insert, rows)
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise

        log.info("Persisted %d rows into %s (%d columns)", len(rows), table, len(schema.columns))
        return len(rows)

    def table_columns(self, table: str) -> List[tuple]:
        """(name, ColumnType) pairs as declared in the database."""
        with self.connection() as conn:
            return self._table_columns(conn, _check_table_name(table))

    def _table_columns(self, conn: sqlite3.Connection, table: str) -> List[tuple]:
        info = conn.execute(f"PRAGMA table_info({_quote(table)})").fetchall()
        return [(row[1], ColumnType.from_declared(row[2])) for row in info]

    def load(self, table: str) -> List[Record]:
        """Read and deserialize every row of ``table`` (empty if missing)."""
        table = _check_table_name(table)
        with self.connection() as conn:
            columns = self._table_columns(conn, table)
            if not columns:
                return []
            rows = conn.execute(f"SELECT * FROM {_quote(table)}").fetchall()

        records = []
        for row in rows:
            record = deserialize_row(columns, row)
            record.pop(SYNCED_AT_COLUMN, None)
            records.append(record)
        return records

    # ------------------------------------------------------------------
    # Cached accessors
    # ------------------------------------------------------------------

    def _get_cached(self, table: str) -> List[Record]:
        if not self._cache[table] and table not in self._hydrated:
            self._cache[table] = self.load(table)
            self._hydrated.add(table)
            log.debug("Hydrated %d %s from database", len(self._cache[table]), table)
        return list(self._cache[table])

    def _set_cached(self, table: str, records: Sequence[Record]) -> None:
        self.persist(table, records)
        self._cache[table] = [dict(record) for record in records]
        self._hydrated.add(table)
        log.info("%d %s stored", len(records), table)

    def get_users(self) -> List[Record]:
        return self._get_cached(USERS_TABLE)

    def get_devices(self) -> List[Record]:
        return self._get_cached(DEVICES_TABLE)

    def set_users(self, records: Sequence[Record]) -> None:
        self._set_cached(USERS_TABLE, records)

    def set_devices(self, records: Sequence[Record]) -> None:
        self._set_cached(DEVICES_TABLE, records)

    def get_user_by_id(self, record_id: str) -> Optional[Record]:
        return next((u for u in self.get_users() if u.get("id") == record_id), None)

    def get_device_by_id(self, record_id: str) -> Optional[Record]:
        return next((d for d in self.get_devices() if d.get("id") == record_id), None)

    def clear_all(self) -> None:
        """Drop all synced tables and empty the caches. The status log is kept."""
        with self.connection() as conn:
            for table in (USERS_TABLE, DEVICES_TABLE):
                conn.execute(f"DROP TABLE IF EXISTS {_quote(table)}")
            conn.commit()
        self._cache = {USERS_TABLE: [], DEVICES_TABLE: []}
        self._hydrated.clear()
        log.info("All synced data cleared")

    # ------------------------------------------------------------------
    # Sync status log
    # ------------------------------------------------------------------

    def append_sync_status(self, status: SyncStatus) -> SyncStatus:
        """Append a status row and mirror it in memory."""
        if not status.lastSyncTime:
            status = status.model_copy(update={"lastSyncTime": utc_now_iso()})
        with self.connection() as conn:
            cur = conn.execute(
                f"""INSERT INTO {SYNC_STATUS_TABLE}
                    (lastSyncTime, usersCount, devicesCount, success, error, duration_ms)
                    VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    status.lastSyncTime,
                    status.usersCount,
                    status.devicesCount,
                    1 if status.success else 0,
                    status.error,
                    status.durationMs,
                ),
            )
            conn.commit()
            status = status.model_copy(update={"id": cur.lastrowid})
        self._status = status
        return status.model_copy()

    def get_sync_status(self) -> SyncStatus:
        """Most recent status, or an empty unsuccessful one if none exists."""
        if self._status is None:
            self._status = self._read_latest_status()
        if self._status is None:
            return SyncStatus()
        return self._status.model_copy()

    def get_sync_history(self, limit: int = 20) -> List[SyncStatus]:
        """Status rows, most recent first."""
        with self.connection() as conn:
            rows = conn.execute(
                f"""SELECT id, lastSyncTime, usersCount, devicesCount, success, error, duration_ms
                    FROM {SYNC_STATUS_TABLE} ORDER BY id DESC LIMIT ?""",
                (limit,),
            ).fetchall()
        return [self._status_from_row(row) for row in rows]

    def _read_latest_status(self) -> Optional[SyncStatus]:
        try:
            history = self.get_sync_history(limit=1)
        except sqlite3.OperationalError:
            return None
        return history[0] if history else None

    @staticmethod
    def _status_from_row(row: Sequence) -> SyncStatus:
        return SyncStatus(
            id=row[0],
            lastSyncTime=row[1],
            usersCount=row[2],
            devicesCount=row[3],
            success=bool(row[4]),
            error=row[5],
            durationMs=row[6],
        )

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_diagnostics(self) -> dict:
        """Introspect the database file for operational visibility."""
        exists = self.db_path.exists()
        diagnostics = {
            "path": str(self.db_path.resolve()),
            "exists": exists,
            "fileSize": self.db_path.stat().st_size if exists else 0,
            "tables": [],
            "tableInfo": {},
        }
        if not exists:
            return diagnostics

        with self.connection() as conn:
            tables = [
                row[0]
                for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' "
                    "AND name NOT LIKE 'sqlite_%' ORDER BY name"
                )
            ]
            diagnostics["tables"] = tables
            for table in tables:
                count = conn.execute(f"SELECT COUNT(*) FROM {_quote(table)}").fetchone()[0]
                info = conn.execute(f"PRAGMA table_info({_quote(table)})").fetchall()
                diagnostics["tableInfo"][table] = {
                    "rowCount": count,
                    "columns": [{"name": c[1], "type": c[2]} for c in info],
                }
        return diagnostics
