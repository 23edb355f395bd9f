"""Requisition synchronization (server-authoritative)."""

import logging
from typing import List

from splitsync.remote.base import Wire
from splitsync.storage.base import SyncableRecord
from splitsync.types import EntityType

from ..orchestrator import EntitySynchronizer
from ..results import ApplyOutcome

logger = logging.getLogger(__name__)


class RequisitionSynchronizer(EntitySynchronizer):
    """Requisitions are created by the banking aggregator flow on the server.

    Nothing is ever pushed from this device; pulled requisitions enter as
    SYNCED and are keyed by their aggregator-issued ``requisition_id``.
    """

    entity_type = EntityType.REQUISITIONS
    batch_size = 20

    def enumerate_local_changes(self) -> List[SyncableRecord]:
        return []

    def handle_new_requisition(self, wire: Wire) -> ApplyOutcome:
        """Store a requisition returned by the consent flow right away.

        Errors propagate to the caller.
        """
        outcome = self.apply_one(wire)
        logger.info(
            f"Stored requisition {self.wire_remote_id(wire)} ({outcome.resolution.value})"
        )
        return outcome
