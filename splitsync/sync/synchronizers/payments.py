"""Payment synchronization, with splits pushed and pulled as one aggregate.

A payment owns its splits. The payment always reaches the server first so
that every split payload can carry the payment's remote id; a failing split
never undoes the payment.
"""

import logging
import sqlite3
from typing import Dict, List

from splitsync.errors import SplitsyncError
from splitsync.remote.base import Wire
from splitsync.storage.base import SyncableRecord
from splitsync.types import PUSHABLE_STATUSES, EntityType, SyncStatus, utc_now

from ..conflict import Resolution
from ..orchestrator import EntitySynchronizer, SyncRun
from ..results import ApplyOutcome, PushOutcome

logger = logging.getLogger(__name__)


class PaymentSplitSynchronizer(EntitySynchronizer):
    """Split push/pull helper. Only ever driven by PaymentSynchronizer."""

    entity_type = EntityType.PAYMENT_SPLITS
    batch_size = 20

    def remote_parent_id(self, record: SyncableRecord):
        return self.id_map.require(EntityType.PAYMENTS, record.payment_id)

    def remote_create(self, record: SyncableRecord, payload: Wire) -> Wire:
        return self.remote.create_split(self.remote_parent_id(record), payload)

    def remote_update(self, record: SyncableRecord, payload: Wire) -> Wire:
        return self.remote.update_split(self.remote_parent_id(record), record.remote_id, payload)

    def remote_delete(self, record: SyncableRecord) -> None:
        self.remote.delete_split(self.remote_parent_id(record), record.remote_id)

    def enumerate_local_changes(self) -> List[SyncableRecord]:
        return []

    def pull_since(self, cursor: int) -> List[Wire]:
        return []


class PaymentSynchronizer(EntitySynchronizer):
    entity_type = EntityType.PAYMENTS
    batch_size = 20

    def __init__(self, store, id_map, remote, user_id=None, **kwargs):
        super().__init__(store, id_map, remote, user_id=user_id, **kwargs)
        self.splits = PaymentSplitSynchronizer(store, id_map, remote, user_id=user_id, **kwargs)

    # === Push ===

    def enumerate_local_changes(self) -> List[SyncableRecord]:
        """Pending payments, plus synced payments that still own pending splits."""
        payments: Dict[int, SyncableRecord] = {
            p.local_id: p for p in self.store.list_by_status(self.entity_type, PUSHABLE_STATUSES)
        }
        for split in self.store.list_by_status(EntityType.PAYMENT_SPLITS, PUSHABLE_STATUSES):
            if split.payment_id is None or split.payment_id in payments:
                continue
            parent = self.store.get(self.entity_type, split.payment_id)
            if parent is not None and parent.sync_status == SyncStatus.SYNCED:
                payments[parent.local_id] = parent
        return [payments[key] for key in sorted(payments)]

    def should_attempt(self, record: SyncableRecord, run: SyncRun) -> bool:
        if (self.entity_type, record.local_id) in run.attempted:
            return False
        return record.sync_status in PUSHABLE_STATUSES or record.sync_status == SyncStatus.SYNCED

    def push_one(self, record: SyncableRecord) -> PushOutcome:
        if record.sync_status in PUSHABLE_STATUSES:
            outcome = super().push_one(record)
            if not outcome.ok or record.is_tombstone:
                return outcome
        else:
            outcome = PushOutcome.success(record)
        outcome.children = self.push_splits(record)
        return outcome

    def push_splits(self, payment: SyncableRecord) -> List[PushOutcome]:
        """Push a payment's pending splits, deletions first."""
        pending = [
            s
            for s in self.store.list_where(EntityType.PAYMENT_SPLITS, payment_id=payment.local_id)
            if s.sync_status in PUSHABLE_STATUSES
        ]
        pending.sort(key=lambda s: (not s.is_tombstone, s.local_id))
        outcomes = [self.splits.push_one(split) for split in pending]
        failed = sum(1 for o in outcomes if not o.ok)
        if failed:
            logger.warning(
                f"{failed} of {len(outcomes)} splits of payment {payment.local_id} failed to sync"
            )
        return outcomes

    def mark_locally_deleted(self, record: SyncableRecord) -> None:
        """The server drops a deleted payment's splits along with it."""
        now = utc_now()
        with self.store.transaction() as conn:
            self.store.set_sync_status(
                self.entity_type, record.local_id, SyncStatus.LOCALLY_DELETED, conn=conn
            )
            for split in self.store.list_where(
                EntityType.PAYMENT_SPLITS, conn=conn, payment_id=record.local_id
            ):
                if split.sync_status == SyncStatus.LOCALLY_DELETED:
                    continue
                split.deleted_at = split.deleted_at or now
                split.sync_status = SyncStatus.LOCALLY_DELETED
                self.store.update(split, conn=conn)
        record.sync_status = SyncStatus.LOCALLY_DELETED

    # === Pull ===

    def apply_one(self, wire: Wire) -> ApplyOutcome:
        """Apply a ``{"payment": ..., "splits": [...]}`` bundle, payment first."""
        payment_wire = wire["payment"] if "payment" in wire else wire
        split_wires = wire.get("splits") or payment_wire.get("splits") or []

        outcome = super().apply_one(payment_wire)
        if outcome.record is None or outcome.resolution == Resolution.SKIP_TOMBSTONE:
            return outcome

        payment_remote_id = self.wire_remote_id(payment_wire)
        for split_wire in split_wires:
            split_wire = dict(split_wire)
            if split_wire.get("payment_id") is None:
                split_wire["payment_id"] = payment_remote_id
            try:
                local = self.splits.find_local(split_wire)
                if local is not None and local.is_tombstone:
                    logger.debug(f"Skipping pulled split {local.remote_id}: deleted locally")
                    continue
                self.splits.apply_one(split_wire)
            except (SplitsyncError, sqlite3.Error) as e:
                logger.warning(
                    f"Could not apply split {split_wire.get('id')} of payment {payment_remote_id}: {e}"
                )
                outcome.errors.append(str(e))
        return outcome
