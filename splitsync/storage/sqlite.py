"""SQLite storage backend for splitsync.

Local-first storage with:
- One table per entity type, sharing the sync envelope columns
- Per-operation connections (WAL, busy timeout)
- Sync metadata and per-entity-type pull state
"""

import contextlib
import logging
import sqlite3
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Type

from splitsync.errors import IdMappingError
from splitsync.types import EntityType, RemoteId, SyncStatus, utc_now
from splitsync.utils import get_splitsync_home

from .base import EntitySyncState, SyncableRecord, record_type_for
from .schema import init_db, validate_table_name

logger = logging.getLogger(__name__)


class SQLiteStore:
    """Keyed record store over SQLite.

    Every public method accepts an optional ``conn``; when given, the work
    joins that connection's transaction instead of opening and committing
    its own. Use ``transaction()`` to group several writes atomically.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else get_splitsync_home() / "splitsync.db"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize the database schema. Delegates to schema.init_db()."""
        with self._connect() as conn:
            init_db(conn, db_path=self.db_path)

    def _get_conn(self) -> sqlite3.Connection:
        """Get a database connection.

        Callers should prefer the _connect() context manager which handles
        commit/rollback and close.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - Connection close in all cases
        """
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def transaction(self):
        """Open one atomic unit of work: commit on success, rollback on error."""
        return self._connect()

    @contextlib.contextmanager
    def _use(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
        else:
            with self._connect() as own:
                yield own

    def close(self):
        """Connections are per-operation, so there is nothing to release."""
        pass

    # === Row conversion ===

    def _to_db(self, value: Any) -> Any:
        if isinstance(value, SyncStatus):
            return value.value
        if isinstance(value, bool):
            return int(value)
        return value

    def _row_to_record(self, cls: Type[SyncableRecord], row: sqlite3.Row) -> SyncableRecord:
        keys = row.keys()
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in keys:
                continue
            value = row[f.name]
            if f.name == "sync_status":
                value = SyncStatus(value)
            elif f.type is bool and value is not None:
                value = bool(value)
            kwargs[f.name] = value
        return cls(**kwargs)

    def _table(self, entity_type: Any) -> str:
        return validate_table_name(EntityType(entity_type).value)

    def _where(self, cls: Type[SyncableRecord], filters: Dict[str, Any]):
        columns = set(cls.column_names())
        clauses = []
        params: List[Any] = []
        for key, value in filters.items():
            if key not in columns:
                raise ValueError(f"Unknown column for {cls.entity_type.value}: {key}")
            if value is None:
                clauses.append(f"{key} IS NULL")
            else:
                clauses.append(f"{key} = ?")
                params.append(self._to_db(value))
        where = " AND ".join(clauses) if clauses else "1 = 1"
        return where, params

    # === Records ===

    def insert(
        self, record: SyncableRecord, conn: Optional[sqlite3.Connection] = None
    ) -> SyncableRecord:
        """Insert a record and assign its local id."""
        table = self._table(record.entity_type)
        columns = [c for c in record.column_names() if not (c == "local_id" and record.local_id is None)]
        values = [self._to_db(getattr(record, c)) for c in columns]
        placeholders = ", ".join("?" for _ in columns)
        with self._use(conn) as c:
            cur = c.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                values,
            )
            record.local_id = cur.lastrowid
        return record

    def update(self, record: SyncableRecord, conn: Optional[sqlite3.Connection] = None) -> None:
        """Write every column of an existing record."""
        if record.local_id is None:
            raise ValueError("Cannot update a record without a local id")
        table = self._table(record.entity_type)
        columns = [c for c in record.column_names() if c != "local_id"]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        values = [self._to_db(getattr(record, c)) for c in columns]
        with self._use(conn) as c:
            c.execute(
                f"UPDATE {table} SET {assignments} WHERE local_id = ?",
                values + [record.local_id],
            )

    def get(
        self, entity_type: Any, local_id: int, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[SyncableRecord]:
        cls = record_type_for(entity_type)
        with self._use(conn) as c:
            row = c.execute(
                f"SELECT * FROM {self._table(entity_type)} WHERE local_id = ?", (local_id,)
            ).fetchone()
        return self._row_to_record(cls, row) if row else None

    def get_by_remote_id(
        self, entity_type: Any, remote_id: RemoteId, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[SyncableRecord]:
        return self.find_one(entity_type, conn=conn, remote_id=remote_id)

    def find_one(
        self, entity_type: Any, conn: Optional[sqlite3.Connection] = None, **filters
    ) -> Optional[SyncableRecord]:
        """First record matching all ``column=value`` filters (None matches NULL)."""
        cls = record_type_for(entity_type)
        where, params = self._where(cls, filters)
        with self._use(conn) as c:
            row = c.execute(
                f"SELECT * FROM {self._table(entity_type)} WHERE {where} "
                f"ORDER BY local_id LIMIT 1",
                params,
            ).fetchone()
        return self._row_to_record(cls, row) if row else None

    def list_where(
        self, entity_type: Any, conn: Optional[sqlite3.Connection] = None, **filters
    ) -> List[SyncableRecord]:
        cls = record_type_for(entity_type)
        where, params = self._where(cls, filters)
        with self._use(conn) as c:
            rows = c.execute(
                f"SELECT * FROM {self._table(entity_type)} WHERE {where} ORDER BY local_id",
                params,
            ).fetchall()
        return [self._row_to_record(cls, row) for row in rows]

    def list_by_status(
        self,
        entity_type: Any,
        statuses: Iterable[SyncStatus],
        conn: Optional[sqlite3.Connection] = None,
    ) -> List[SyncableRecord]:
        """Records whose sync status is one of ``statuses``, oldest first."""
        cls = record_type_for(entity_type)
        values = [SyncStatus(s).value for s in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        with self._use(conn) as c:
            rows = c.execute(
                f"SELECT * FROM {self._table(entity_type)} "
                f"WHERE sync_status IN ({placeholders}) ORDER BY local_id",
                values,
            ).fetchall()
        return [self._row_to_record(cls, row) for row in rows]

    def count_by_status(
        self, entity_type: Any, conn: Optional[sqlite3.Connection] = None
    ) -> Dict[str, int]:
        with self._use(conn) as c:
            rows = c.execute(
                f"SELECT sync_status, COUNT(*) AS n FROM {self._table(entity_type)} "
                f"GROUP BY sync_status"
            ).fetchall()
        return {row["sync_status"]: row["n"] for row in rows}

    def set_sync_status(
        self,
        entity_type: Any,
        local_id: int,
        status: SyncStatus,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        with self._use(conn) as c:
            c.execute(
                f"UPDATE {self._table(entity_type)} SET sync_status = ? WHERE local_id = ?",
                (SyncStatus(status).value, local_id),
            )

    def mark_synced(
        self,
        record: SyncableRecord,
        remote_id: Optional[RemoteId],
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Record the remote identity and SYNCED status in one statement.

        An existing remote id is never replaced by a different one.
        """
        if remote_id is None:
            remote_id = record.remote_id
        if record.remote_id is not None and remote_id != record.remote_id:
            raise IdMappingError(
                f"{record.entity_type.value}:{record.local_id} already bound to "
                f"{record.remote_id}, refusing {remote_id}"
            )
        with self._use(conn) as c:
            c.execute(
                f"UPDATE {self._table(record.entity_type)} "
                f"SET remote_id = ?, sync_status = ? WHERE local_id = ?",
                (remote_id, SyncStatus.SYNCED.value, record.local_id),
            )
        record.remote_id = remote_id
        record.sync_status = SyncStatus.SYNCED

    # === Repository helpers (used by feature code) ===

    def mark_dirty(self, record: SyncableRecord, conn: Optional[sqlite3.Connection] = None) -> None:
        """Persist a local edit and queue it for the next push."""
        record.updated_at = utc_now()
        record.sync_status = SyncStatus.PENDING_SYNC
        self.update(record, conn=conn)

    def soft_delete(
        self, entity_type: Any, local_id: int, conn: Optional[sqlite3.Connection] = None
    ) -> bool:
        """Turn a record into a tombstone awaiting propagation."""
        now = utc_now()
        with self._use(conn) as c:
            cur = c.execute(
                f"UPDATE {self._table(entity_type)} "
                f"SET deleted_at = ?, updated_at = ?, sync_status = ? "
                f"WHERE local_id = ? AND deleted_at IS NULL",
                (now, now, SyncStatus.PENDING_SYNC.value, local_id),
            )
            return cur.rowcount > 0

    # === Sync metadata ===

    def get_meta(self, key: str, conn: Optional[sqlite3.Connection] = None) -> Optional[str]:
        with self._use(conn) as c:
            row = c.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str, conn: Optional[sqlite3.Connection] = None) -> None:
        with self._use(conn) as c:
            c.execute(
                "INSERT OR REPLACE INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, utc_now()),
            )

    def get_entity_state(
        self, entity_type: Any, conn: Optional[sqlite3.Connection] = None
    ) -> EntitySyncState:
        entity_type = EntityType(entity_type)
        with self._use(conn) as c:
            row = c.execute(
                "SELECT * FROM entity_sync_state WHERE entity_type = ?", (entity_type.value,)
            ).fetchone()
        if row is None:
            return EntitySyncState(entity_type=entity_type)
        return EntitySyncState(
            entity_type=entity_type,
            last_sync_timestamp=row["last_sync_timestamp"],
            sync_status=row["sync_status"],
            last_sync_result=row["last_sync_result"],
            update_count=row["update_count"],
            updated_at=row["updated_at"],
        )

    def save_entity_state(
        self, state: EntitySyncState, conn: Optional[sqlite3.Connection] = None
    ) -> None:
        state.updated_at = utc_now()
        with self._use(conn) as c:
            c.execute(
                """INSERT OR REPLACE INTO entity_sync_state
                   (entity_type, last_sync_timestamp, sync_status, last_sync_result,
                    update_count, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    EntityType(state.entity_type).value,
                    state.last_sync_timestamp,
                    state.sync_status,
                    state.last_sync_result,
                    state.update_count,
                    state.updated_at,
                ),
            )
