"""Sync run coordination.

SyncCoordinator drives every entity synchronizer through a push phase and
then a pull phase in fixed dependency order, followed by the throttled live
bank-transaction refresh. Only one run may be in flight at a time.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from splitsync.errors import PreconditionError, RemoteError, SyncInProgressError
from splitsync.remote.base import RemoteService
from splitsync.storage.base import EntitySyncState, SyncableRecord
from splitsync.storage.id_map import IdMappingStore
from splitsync.storage.sqlite import SQLiteStore
from splitsync.types import PUSHABLE_STATUSES, EntityType, SyncStatus, utc_now

from .orchestrator import EntitySynchronizer, SyncRun
from .results import EntitySyncResult, PushOutcome, RunResult, RunStatus
from .synchronizers import build_synchronizers
from .transactions import TransactionCache, TransactionFetcher

logger = logging.getLogger(__name__)


def _utc_datetime() -> datetime:
    return datetime.now(timezone.utc)


class SyncCoordinator:
    """Owns the synchronizers and runs them as one sync.

    Args:
        store: Local SQLite store.
        remote: Remote service.
        user_id: Local id of the session user; None means no session.
        transaction_cache: Cache and call budget for live transactions.
    """

    def __init__(
        self,
        store: SQLiteStore,
        remote: RemoteService,
        user_id: Optional[int],
        id_map: Optional[IdMappingStore] = None,
        transaction_cache: Optional[TransactionCache] = None,
        synchronizers: Optional[List[EntitySynchronizer]] = None,
        now_fn: Callable[[], datetime] = _utc_datetime,
    ):
        self.store = store
        self.remote = remote
        self.user_id = user_id
        self.id_map = id_map or IdMappingStore(store)
        self.synchronizers = synchronizers or build_synchronizers(
            store, self.id_map, remote, user_id=user_id, now_fn=now_fn
        )
        self._by_type: Dict[EntityType, EntitySynchronizer] = {
            s.entity_type: s for s in self.synchronizers
        }
        self.transaction_cache = transaction_cache or TransactionCache(store)
        self.fetcher = TransactionFetcher(
            remote, self.transaction_cache, self._by_type.get(EntityType.BANK_ACCOUNTS)
        )
        self._run_lock = threading.Lock()
        self._cancel = threading.Event()

    def synchronizer(self, entity_type) -> EntitySynchronizer:
        entity_type = EntityType(entity_type)
        if entity_type == EntityType.PAYMENT_SPLITS:
            return self._by_type[EntityType.PAYMENTS].splits
        return self._by_type[entity_type]

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    # === Runs ===

    def _check_preconditions(self) -> None:
        if self.user_id is None:
            raise PreconditionError("No authenticated session")
        try:
            reachable = self.remote.health()
        except RemoteError as e:
            raise PreconditionError(f"Remote service unreachable: {e}")
        if not reachable:
            raise PreconditionError("Remote service unreachable")

    def trigger_sync(self, force_live_refresh: bool = False) -> RunResult:
        """Run one full sync: push all, pull all, then refresh live transactions."""
        if not self._run_lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            return RunResult(status=RunStatus.SKIPPED, error="Sync already in progress")
        try:
            self._cancel.clear()
            result = RunResult(status=RunStatus.SUCCESS, started_at=utc_now())
            try:
                self._check_preconditions()
            except PreconditionError as e:
                logger.warning(f"Sync not started: {e}")
                result.status = RunStatus.ERROR
                result.error = str(e)
                result.finished_at = utc_now()
                return result

            run = SyncRun(cancel_event=self._cancel)
            for sync in self.synchronizers:
                result.entities[sync.entity_type] = EntitySyncResult(sync.entity_type)

            logger.info("Sync started")
            self._run_phase("push", run, result)
            self._run_phase("pull", run, result)

            if not run.cancelled:
                result.live_fetch = self.fetcher.refresh(self.user_id, force=force_live_refresh)

            result.cancelled = run.cancelled or any(r.cancelled for r in result.entities.values())
            live_failed = result.live_fetch is not None and result.live_fetch.status in (
                RunStatus.ERROR,
                RunStatus.PARTIAL_SUCCESS,
            )
            if result.failed or live_failed or result.cancelled:
                result.status = RunStatus.PARTIAL_SUCCESS
            result.finished_at = utc_now()
            logger.info(
                f"Sync finished: {result.status.value} "
                f"(succeeded={result.succeeded}, failed={result.failed})"
            )
            return result
        finally:
            self._run_lock.release()

    def _run_phase(self, phase: str, run: SyncRun, result: RunResult) -> None:
        for sync in self.synchronizers:
            if run.cancelled:
                logger.info(f"Sync cancelled before {phase} of {sync.entity_type.value}")
                return
            entity_result = result.entities[sync.entity_type]
            try:
                if phase == "push":
                    entity_result.add_push(sync.push_phase(run))
                else:
                    entity_result.add_pull(sync.pull_phase(run))
            except SyncInProgressError as e:
                logger.warning(str(e))
                entity_result.errors.append(str(e))
                if phase == "push":
                    entity_result.push_failed += 1
                else:
                    entity_result.pull_failed += 1

    def cancel(self) -> None:
        """Stop the current run at the next batch boundary."""
        if self.is_running:
            logger.info("Cancelling sync")
        self._cancel.set()

    # === Queries ===

    def get_sync_status(self, entity_type, local_id: int) -> Optional[SyncStatus]:
        record = self.store.get(entity_type, local_id)
        return record.sync_status if record else None

    def get_entity_state(self, entity_type) -> EntitySyncState:
        return self.store.get_entity_state(entity_type)

    def pending_counts(self) -> Dict[EntityType, int]:
        """Records awaiting a push, per entity type (splits included)."""
        counts: Dict[EntityType, int] = {}
        for entity_type in list(self._by_type) + [EntityType.PAYMENT_SPLITS]:
            by_status = self.store.count_by_status(entity_type)
            counts[entity_type] = sum(by_status.get(s.value, 0) for s in PUSHABLE_STATUSES)
        return counts

    def conflicts(self) -> Dict[EntityType, List[SyncableRecord]]:
        found: Dict[EntityType, List[SyncableRecord]] = {}
        for entity_type in list(self._by_type) + [EntityType.PAYMENT_SPLITS]:
            records = self.store.list_by_status(entity_type, [SyncStatus.CONFLICT])
            if records:
                found[entity_type] = records
        return found

    # === Escape hatches ===

    def push_record(self, entity_type, local_id: int) -> PushOutcome:
        """Push one record now, outside the batch loop.

        Raises SyncInProgressError while a push of the same type is running.
        """
        sync = self.synchronizer(entity_type)
        record = self.store.get(entity_type, local_id)
        if record is None:
            raise ValueError(f"No {EntityType(entity_type).value} with local id {local_id}")
        return sync.push_single(record)

    def resolve_conflict(self, entity_type, local_id: int) -> bool:
        """Requeue a CONFLICT record once its owning feature has decided."""
        record = self.store.get(entity_type, local_id)
        if record is None or record.sync_status != SyncStatus.CONFLICT:
            return False
        self.store.mark_dirty(record)
        logger.info(f"Conflict on {record.entity_type.value}:{local_id} resolved, requeued")
        return True
