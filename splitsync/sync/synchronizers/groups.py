"""Group, membership and default-split synchronization."""

import logging
from typing import Optional

from splitsync.storage.base import SyncableRecord
from splitsync.types import EntityType, RemoteId

from ..orchestrator import EntitySynchronizer

logger = logging.getLogger(__name__)


class GroupSynchronizer(EntitySynchronizer):
    entity_type = EntityType.GROUPS
    batch_size = 20


class _GroupScopedSynchronizer(EntitySynchronizer):
    """Records whose remote endpoints live under their group."""

    def remote_parent_id(self, record: SyncableRecord) -> Optional[RemoteId]:
        return self.id_map.require(EntityType.GROUPS, record.group_id)


class GroupMemberSynchronizer(_GroupScopedSynchronizer):
    """Memberships need both the group and the user to exist remotely.

    Removing a member sets ``removed_at`` and pushes as a plain update; the
    membership row itself stays.
    """

    entity_type = EntityType.GROUP_MEMBERS
    batch_size = 50


class GroupDefaultSplitSynchronizer(_GroupScopedSynchronizer):
    entity_type = EntityType.GROUP_DEFAULT_SPLITS
    batch_size = 20
