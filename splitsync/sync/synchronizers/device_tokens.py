"""Device token registration.

Push-only: the server never sends tokens back, and a registered token
cannot be updated, only unregistered.
"""

import logging
from typing import List

from splitsync.remote.base import Wire
from splitsync.storage.base import SyncableRecord
from splitsync.types import EntityType

from ..orchestrator import EntitySynchronizer
from ..results import PushOutcome

logger = logging.getLogger(__name__)


class DeviceTokenSynchronizer(EntitySynchronizer):
    entity_type = EntityType.DEVICE_TOKENS
    batch_size = 50

    def _push_update(self, record: SyncableRecord) -> PushOutcome:
        # Already registered; nothing the server lets us change.
        self.commit_synced(record, record.remote_id)
        logger.debug(f"Device token {record.local_id} already registered as {record.remote_id}")
        return PushOutcome.success(record)

    def pull_since(self, cursor: int) -> List[Wire]:
        return []
