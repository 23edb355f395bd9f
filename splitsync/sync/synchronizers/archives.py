"""Per-user group archive synchronization.

Archiving a group creates a GroupArchive record; unarchiving soft-deletes
it, which the tombstone path turns into a restore call.
"""

import logging
from typing import List, Optional

from splitsync.remote.base import Wire
from splitsync.storage.base import GroupArchive, SyncableRecord
from splitsync.types import EntityType, RemoteId, utc_now

from ..orchestrator import EntitySynchronizer

logger = logging.getLogger(__name__)


def archive_key(group_id: RemoteId, user_id: RemoteId) -> str:
    """Remote identity of an archive: one per (group, user) pair."""
    return f"{group_id}:{user_id}"


class GroupArchiveSynchronizer(EntitySynchronizer):
    entity_type = EntityType.GROUP_ARCHIVES
    batch_size = 50

    def archive_group(self, group_id: int, user_id: Optional[int] = None) -> GroupArchive:
        """Record that ``user_id`` (default: session user) archived a group.

        Re-archiving after an unarchive revives the pair's earlier record, so
        it keeps the composite remote id it was already bound to.
        """
        user_id = user_id if user_id is not None else self.user_id
        records = self.store.list_where(self.entity_type, group_id=group_id, user_id=user_id)
        for existing in records:
            if not existing.is_tombstone:
                return existing
        if records:
            record = records[-1]
            record.deleted_at = None
            record.archived_at = utc_now()
            self.store.mark_dirty(record)
            logger.debug(f"Revived archive {record.local_id} of group {group_id} for user {user_id}")
            return record
        record = GroupArchive(group_id=group_id, user_id=user_id, archived_at=utc_now())
        self.store.insert(record)
        logger.debug(f"Queued archive of group {group_id} for user {user_id}")
        return record

    def _remote_pair(self, record: SyncableRecord):
        return (
            self.id_map.require(EntityType.GROUPS, record.group_id),
            self.id_map.require(EntityType.USERS, record.user_id),
        )

    def remote_create(self, record: SyncableRecord, payload: Wire) -> Wire:
        group_id, user_id = self._remote_pair(record)
        self.remote.archive_group(group_id, user_id)
        return {"id": archive_key(group_id, user_id)}

    def remote_update(self, record: SyncableRecord, payload: Wire) -> Wire:
        group_id, user_id = self._remote_pair(record)
        self.remote.archive_group(group_id, user_id)
        return {}

    def remote_delete(self, record: SyncableRecord) -> None:
        group_id, user_id = self._remote_pair(record)
        self.remote.unarchive_group(group_id, user_id)

    def wire_remote_id(self, wire: Wire) -> Optional[RemoteId]:
        if wire.get("group_id") is None or wire.get("user_id") is None:
            return None
        return archive_key(wire["group_id"], wire["user_id"])

    def pull_since(self, cursor: int) -> List[Wire]:
        remote_user = self.session_remote_user_id()
        wires = self.remote.list_since(self.entity_type, cursor, user_id=remote_user)
        for wire in wires:
            if wire.get("user_id") is None:
                wire["user_id"] = remote_user
            if not wire.get("updated_at") and wire.get("archived_at"):
                wire["updated_at"] = wire["archived_at"]
        return wires
