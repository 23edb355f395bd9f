"""Local id -> remote id translation table.

Payloads sent to the remote service must reference other records by their
remote identity. Mappings are write-once: once a local id is bound to a
remote id the binding never changes.
"""

import logging
import sqlite3
from typing import Any, Optional

from splitsync.errors import IdMappingError, MissingDependencyError
from splitsync.types import EntityType, RemoteId, utc_now

from .sqlite import SQLiteStore

logger = logging.getLogger(__name__)


class IdMappingStore:
    """Persistent, write-once map of (entity type, local id) -> remote id."""

    def __init__(self, store: SQLiteStore):
        self.store = store

    def save(
        self,
        entity_type: Any,
        local_id: int,
        remote_id: RemoteId,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Bind a local id to a remote id.

        Saving the same binding again is a no-op. A different remote id for an
        already bound local id raises IdMappingError.
        """
        entity_type = EntityType(entity_type)
        if remote_id is None:
            raise IdMappingError(f"Refusing to map {entity_type.value}:{local_id} to None")
        with self.store._use(conn) as c:
            row = c.execute(
                "SELECT remote_id FROM id_mappings WHERE entity_type = ? AND local_id = ?",
                (entity_type.value, local_id),
            ).fetchone()
            if row is not None:
                if row["remote_id"] != remote_id:
                    raise IdMappingError(
                        f"{entity_type.value}:{local_id} already mapped to "
                        f"{row['remote_id']}, refusing {remote_id}"
                    )
                return
            try:
                c.execute(
                    "INSERT INTO id_mappings (entity_type, local_id, remote_id, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    (entity_type.value, local_id, remote_id, utc_now()),
                )
            except sqlite3.IntegrityError as e:
                raise IdMappingError(
                    f"Remote id {remote_id} already mapped for {entity_type.value}: {e}"
                )
        logger.debug(f"Mapped {entity_type.value}:{local_id} -> {remote_id}")

    def resolve(
        self, entity_type: Any, local_id: Optional[int], conn: Optional[sqlite3.Connection] = None
    ) -> Optional[RemoteId]:
        if local_id is None:
            return None
        with self.store._use(conn) as c:
            row = c.execute(
                "SELECT remote_id FROM id_mappings WHERE entity_type = ? AND local_id = ?",
                (EntityType(entity_type).value, local_id),
            ).fetchone()
        return row["remote_id"] if row else None

    def require(
        self, entity_type: Any, local_id: Optional[int], conn: Optional[sqlite3.Connection] = None
    ) -> RemoteId:
        """Resolve or fail fast; a local id must never reach the remote service."""
        remote_id = self.resolve(entity_type, local_id, conn=conn)
        if remote_id is None:
            raise MissingDependencyError(EntityType(entity_type).value, local_id)
        return remote_id

    def resolve_local(
        self, entity_type: Any, remote_id: Optional[RemoteId], conn: Optional[sqlite3.Connection] = None
    ) -> Optional[int]:
        """Reverse lookup used when translating pulled foreign keys."""
        if remote_id is None:
            return None
        with self.store._use(conn) as c:
            row = c.execute(
                "SELECT local_id FROM id_mappings WHERE entity_type = ? AND remote_id = ?",
                (EntityType(entity_type).value, remote_id),
            ).fetchone()
        return row["local_id"] if row else None
