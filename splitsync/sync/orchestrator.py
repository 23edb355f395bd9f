"""Generic push/pull orchestration for one entity type.

EntitySynchronizer owns the batch loop, wire conversion, foreign-key
translation through the id map, tombstone propagation and the pull cursor.
Subclasses only describe what differs for their entity type: batch size,
which remote endpoints to call, and any extra matching rules.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, ClassVar, Dict, FrozenSet, Iterator, List, Optional, Sequence, Set, Tuple

from splitsync.errors import (
    ConversionError,
    IdMappingError,
    MissingDependencyError,
    OwnershipConflictError,
    RemoteError,
    SplitsyncError,
    SyncInProgressError,
)
from splitsync.remote.base import RemoteService, Wire
from splitsync.storage.base import SyncableRecord, record_type_for
from splitsync.storage.id_map import IdMappingStore
from splitsync.storage.sqlite import SQLiteStore
from splitsync.types import (
    PUSHABLE_STATUSES,
    EntityType,
    RemoteId,
    SyncStatus,
    to_epoch_millis,
    utc_now,
)

from .conflict import Resolution, decide
from .results import ApplyOutcome, BatchResult, OutcomeKind, PushOutcome

logger = logging.getLogger(__name__)

# Wire fields carried by every record besides its own data
ENVELOPE_WIRE_FIELDS = ("created_at", "updated_at", "deleted_at")


def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _utc_datetime() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncRun:
    """State shared by every synchronizer during one sync run."""

    cancel_event: threading.Event = field(default_factory=threading.Event)
    # (entity type, local id) pairs already pushed during this run
    attempted: Set[Tuple[EntityType, int]] = field(default_factory=set)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class EntitySynchronizer:
    """Push/pull driver for one entity type.

    Subclasses set ``entity_type`` and ``batch_size`` and override the
    ``remote_*`` hooks when the entity does not use the generic endpoints.
    """

    entity_type: ClassVar[EntityType]
    batch_size: ClassVar[int] = 50
    # Foreign keys left unset on pull when their target is not known locally
    optional_foreign_keys: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(
        self,
        store: SQLiteStore,
        id_map: IdMappingStore,
        remote: RemoteService,
        user_id: Optional[int] = None,
        now_fn: Callable[[], datetime] = _utc_datetime,
    ):
        self.store = store
        self.id_map = id_map
        self.remote = remote
        # Local id of the session user
        self.user_id = user_id
        self._now = now_fn
        self.record_cls = record_type_for(self.entity_type)
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.entity_type.value})"

    # === Single-flight ===

    def _acquire(self, what: str) -> None:
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError(f"{what} for {self.entity_type.value} already in progress")

    # === Conversion ===

    def session_remote_user_id(self) -> Optional[RemoteId]:
        return self.id_map.resolve(EntityType.USERS, self.user_id)

    def to_payload(self, record: SyncableRecord) -> Wire:
        """Wire payload for a push. Local foreign keys become remote ids."""
        payload: Wire = {}
        for name in record.data_fields():
            value = getattr(record, name)
            target = record.foreign_keys.get(name)
            if target is not None and value is not None:
                value = self.id_map.require(target, value)
            payload[name] = value
        payload["created_at"] = record.created_at
        payload["updated_at"] = record.updated_at
        if record.remote_id is not None:
            payload[record.wire_id_field] = record.remote_id
        return payload

    def wire_remote_id(self, wire: Wire) -> Optional[RemoteId]:
        return wire.get(self.record_cls.wire_id_field)

    def from_wire(
        self,
        wire: Wire,
        conn: Optional[sqlite3.Connection] = None,
        local: Optional[SyncableRecord] = None,
    ) -> SyncableRecord:
        """Build a SYNCED local record from a pulled one.

        Fields the wire record omits keep their value from ``local``.
        """
        remote_id = self.wire_remote_id(wire)
        if remote_id is None:
            raise ConversionError(
                f"{self.entity_type.value} wire record has no {self.record_cls.wire_id_field}"
            )
        kwargs: Dict[str, Any] = {}
        for name in self.record_cls.data_fields():
            if name not in wire:
                if local is not None:
                    kwargs[name] = getattr(local, name)
                continue
            value = wire[name]
            target = self.record_cls.foreign_keys.get(name)
            if target is not None and value is not None:
                resolved = self.id_map.resolve_local(target, value, conn=conn)
                if resolved is None and name not in self.optional_foreign_keys:
                    raise MissingDependencyError(
                        target.value, detail=f"pulled {name}", remote_id=value
                    )
                value = resolved
            kwargs[name] = value
        now = utc_now()
        return self.record_cls(
            remote_id=remote_id,
            sync_status=SyncStatus.SYNCED,
            created_at=wire.get("created_at") or now,
            updated_at=wire.get("updated_at") or wire.get("created_at") or now,
            deleted_at=wire.get("deleted_at"),
            **kwargs,
        )

    # === Remote hooks ===

    def remote_parent_id(self, record: SyncableRecord) -> Optional[RemoteId]:
        """Remote id of the owning resource for scoped endpoints."""
        return None

    def remote_create(self, record: SyncableRecord, payload: Wire) -> Wire:
        return self.remote.create(self.entity_type, payload, parent_id=self.remote_parent_id(record))

    def remote_update(self, record: SyncableRecord, payload: Wire) -> Wire:
        return self.remote.update(
            self.entity_type, record.remote_id, payload, parent_id=self.remote_parent_id(record)
        )

    def remote_delete(self, record: SyncableRecord) -> None:
        self.remote.delete(
            self.entity_type, record.remote_id, parent_id=self.remote_parent_id(record)
        )

    def created_remote_id(self, record: SyncableRecord, response: Wire) -> Optional[RemoteId]:
        return (response or {}).get(record.wire_id_field)

    # === Push ===

    def enumerate_local_changes(self) -> List[SyncableRecord]:
        """Records awaiting a push, tombstones included."""
        return self.store.list_by_status(self.entity_type, PUSHABLE_STATUSES)

    def should_attempt(self, record: SyncableRecord, run: SyncRun) -> bool:
        if (self.entity_type, record.local_id) in run.attempted:
            return False
        return record.sync_status in PUSHABLE_STATUSES

    def push_one(self, record: SyncableRecord) -> PushOutcome:
        """Push one record. Never raises for per-record failures."""
        try:
            if record.is_tombstone:
                return self._push_delete(record)
            if record.remote_id is None:
                return self._push_create(record)
            return self._push_update(record)
        except MissingDependencyError as e:
            logger.warning(f"Deferring {self.entity_type.value}:{record.local_id}: {e}")
            outcome = PushOutcome.missing_dependency(record, str(e))
        except OwnershipConflictError as e:
            outcome = PushOutcome.ownership_conflict(record, str(e))
        except RemoteError as e:
            if e.is_forbidden:
                outcome = PushOutcome.ownership_conflict(record, str(e))
            elif e.is_transient:
                outcome = PushOutcome.transient(record, str(e))
            else:
                outcome = PushOutcome.invalid(record, str(e))
        except (ConversionError, IdMappingError, ValueError) as e:
            outcome = PushOutcome.invalid(record, str(e))
        except sqlite3.Error as e:
            logger.error(
                f"Local store failure pushing {self.entity_type.value}:{record.local_id}: {e}",
                exc_info=True,
            )
            outcome = PushOutcome.local_store_error(record, str(e))
        except Exception as e:
            logger.error(
                f"Error pushing {self.entity_type.value}:{record.local_id}: {e}", exc_info=True
            )
            outcome = PushOutcome.invalid(record, str(e))
        return self._record_failure(outcome)

    def _push_create(self, record: SyncableRecord) -> PushOutcome:
        payload = self.to_payload(record)
        response = self.remote_create(record, payload)
        remote_id = self.created_remote_id(record, response)
        if remote_id is None:
            raise ConversionError(f"Create of {self.entity_type.value} returned no remote id")
        self.commit_synced(record, remote_id)
        logger.debug(f"Created {self.entity_type.value}:{record.local_id} as {remote_id}")
        return PushOutcome.success(record)

    def _push_update(self, record: SyncableRecord) -> PushOutcome:
        payload = self.to_payload(record)
        self.remote_update(record, payload)
        self.commit_synced(record, record.remote_id)
        logger.debug(f"Updated {self.entity_type.value}:{record.local_id} ({record.remote_id})")
        return PushOutcome.success(record)

    def _push_delete(self, record: SyncableRecord) -> PushOutcome:
        if record.remote_id is not None:
            try:
                self.remote_delete(record)
            except RemoteError as e:
                if e.status_code != 404:
                    raise
                logger.debug(f"{self.entity_type.value}:{record.remote_id} already gone remotely")
        self.mark_locally_deleted(record)
        logger.debug(f"Deleted {self.entity_type.value}:{record.local_id}")
        return PushOutcome.success(record)

    def mark_locally_deleted(self, record: SyncableRecord) -> None:
        self.store.set_sync_status(self.entity_type, record.local_id, SyncStatus.LOCALLY_DELETED)
        record.sync_status = SyncStatus.LOCALLY_DELETED

    def commit_synced(self, record: SyncableRecord, remote_id: Optional[RemoteId]) -> None:
        """Persist remote id, id mapping and SYNCED in one transaction."""
        with self.store.transaction() as conn:
            if remote_id is not None:
                self.id_map.save(self.entity_type, record.local_id, remote_id, conn=conn)
            self.store.mark_synced(record, remote_id, conn=conn)

    def _record_failure(self, outcome: PushOutcome) -> PushOutcome:
        record = outcome.record
        status = (
            SyncStatus.CONFLICT
            if outcome.kind == OutcomeKind.OWNERSHIP_CONFLICT
            else SyncStatus.SYNC_FAILED
        )
        if outcome.kind == OutcomeKind.OWNERSHIP_CONFLICT:
            logger.warning(
                f"Ownership conflict on {self.entity_type.value}:{record.local_id}: "
                f"{outcome.message}"
            )
        else:
            logger.info(
                f"Push of {self.entity_type.value}:{record.local_id} failed "
                f"({outcome.kind.value}): {outcome.message}"
            )
        try:
            self.store.set_sync_status(record.entity_type, record.local_id, status)
            record.sync_status = status
        except sqlite3.Error as e:
            logger.error(
                f"Could not record failure for {self.entity_type.value}:{record.local_id}: {e}",
                exc_info=True,
            )
        return outcome

    def push_phase(self, run: SyncRun) -> BatchResult:
        """Push every pending record in fixed-size batches."""
        self._acquire("Push")
        try:
            result = BatchResult()
            pending = self.enumerate_local_changes()
            candidates = []
            for record in pending:
                if self.should_attempt(record, run):
                    candidates.append(record)
                else:
                    result.skipped += 1
            for batch in chunked(candidates, self.batch_size):
                if run.cancelled:
                    result.cancelled = True
                    break
                for record in batch:
                    run.attempted.add((self.entity_type, record.local_id))
                    self._tally(result, self.push_one(record))
            logger.info(f"Pushed {self.entity_type.value}: {result}")
            return result
        finally:
            self._lock.release()

    def push_single(self, record: SyncableRecord) -> PushOutcome:
        """Push one record outside the batch loop."""
        self._acquire("Push")
        try:
            return self.push_one(record)
        finally:
            self._lock.release()

    def _tally(self, result: BatchResult, outcome: PushOutcome) -> None:
        for item in [outcome] + outcome.children:
            if item.ok:
                result.succeeded += 1
                continue
            result.failed += 1
            if item.message:
                result.errors.append(item.message)
            if item.kind == OutcomeKind.OWNERSHIP_CONFLICT and item.record is not None:
                if item.record.entity_type == self.entity_type:
                    result.conflicts.append(item.record.local_id)

    # === Pull ===

    def pull_since(self, cursor: int) -> List[Wire]:
        """Remote records changed after ``cursor`` (epoch milliseconds)."""
        return self.remote.list_since(self.entity_type, cursor)

    def find_local(
        self, wire: Wire, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[SyncableRecord]:
        remote_id = self.wire_remote_id(wire)
        if remote_id is None:
            return None
        return self.store.get_by_remote_id(self.entity_type, remote_id, conn=conn)

    def apply_one(self, wire: Wire) -> ApplyOutcome:
        """Apply one pulled record under the conflict policy."""
        with self.store.transaction() as conn:
            local = self.find_local(wire, conn=conn)
            resolution = decide(local, wire.get("updated_at"))
            if not resolution.applies:
                logger.debug(
                    f"Skipping pulled {self.entity_type.value}:{self.wire_remote_id(wire)} "
                    f"({resolution.value})"
                )
                return ApplyOutcome(resolution, local)

            record = self.from_wire(wire, conn=conn, local=local)
            if resolution == Resolution.INSERT:
                self.store.insert(record, conn=conn)
            else:
                record.local_id = local.local_id
                if local.remote_id is not None and local.remote_id != record.remote_id:
                    raise IdMappingError(
                        f"{self.entity_type.value}:{local.local_id} bound to {local.remote_id}, "
                        f"pulled copy claims {record.remote_id}"
                    )
                self.store.update(record, conn=conn)
            self.id_map.save(self.entity_type, record.local_id, record.remote_id, conn=conn)
        return ApplyOutcome(resolution, record)

    def pull_phase(self, run: SyncRun) -> BatchResult:
        """Pull remote changes since the stored cursor and apply them.

        The cursor only advances when every record applied (or was skipped by
        policy) and the run was not cancelled.
        """
        self._acquire("Pull")
        try:
            result = BatchResult()
            state = self.store.get_entity_state(self.entity_type)
            started_ms = to_epoch_millis(self._now())
            try:
                wires = self.pull_since(state.last_sync_timestamp)
            except RemoteError as e:
                logger.warning(f"Pull of {self.entity_type.value} failed: {e}")
                result.failed += 1
                result.errors.append(str(e))
                wires = []

            for batch in chunked(wires, self.batch_size):
                if run.cancelled:
                    result.cancelled = True
                    break
                for wire in batch:
                    try:
                        outcome = self.apply_one(wire)
                    except (SplitsyncError, sqlite3.Error) as e:
                        logger.warning(f"Could not apply pulled {self.entity_type.value}: {e}")
                        result.failed += 1
                        result.errors.append(str(e))
                        continue
                    except Exception as e:
                        logger.error(
                            f"Error applying pulled {self.entity_type.value}: {e}", exc_info=True
                        )
                        result.failed += 1
                        result.errors.append(str(e))
                        continue
                    if outcome.applied:
                        result.succeeded += 1
                    else:
                        result.skipped += 1
                    result.failed += len(outcome.errors)
                    result.errors.extend(outcome.errors)

            if not result.failed and not result.cancelled:
                state.last_sync_timestamp = started_ms
            state.sync_status = result.status.value
            state.last_sync_result = str(result)
            state.update_count += result.succeeded
            self.store.save_entity_state(state)
            logger.info(f"Pulled {self.entity_type.value}: {result}")
            return result
        finally:
            self._lock.release()
