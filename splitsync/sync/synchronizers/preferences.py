"""User preference synchronization.

Preferences are keyed by ``preference_key`` per user. The server keeps at
most one preference per key, so a push first looks for an existing server
copy and adopts it instead of creating a duplicate.
"""

import logging
import sqlite3
from typing import List, Optional

from splitsync.errors import ConversionError, RemoteError
from splitsync.remote.base import Wire
from splitsync.storage.base import SyncableRecord
from splitsync.types import EntityType

from ..orchestrator import EntitySynchronizer
from ..results import PushOutcome

logger = logging.getLogger(__name__)


class UserPreferenceSynchronizer(EntitySynchronizer):
    entity_type = EntityType.USER_PREFERENCES
    batch_size = 50

    def _push_create(self, record: SyncableRecord) -> PushOutcome:
        # The owning user must exist remotely before any preference does.
        self.id_map.require(EntityType.USERS, record.user_id)

        existing = self.remote.get_preference(record.preference_key)
        if existing is not None:
            return self._adopt(record, existing)

        try:
            return super()._push_create(record)
        except RemoteError as e:
            if e.status_code != 400 or "already exists" not in (e.message or ""):
                raise
            logger.debug(f"Preference {record.preference_key} already exists, adopting it")
        existing = self.remote.get_preference(record.preference_key)
        if existing is None:
            raise RemoteError(409, f"Preference {record.preference_key} exists but is not readable")
        return self._adopt(record, existing)

    def _adopt(self, record: SyncableRecord, existing: Wire) -> PushOutcome:
        """Write our value over the server copy and take over its id."""
        if existing.get("id") is None:
            raise ConversionError(f"Server preference {record.preference_key} has no id")
        self.remote.update_preference(record.preference_key, record.preference_value)
        self.commit_synced(record, existing.get("id"))
        logger.debug(
            f"Adopted server preference {existing.get('id')} for "
            f"{record.preference_key} (local {record.local_id})"
        )
        return PushOutcome.success(record)

    def remote_update(self, record: SyncableRecord, payload: Wire) -> Wire:
        return self.remote.update_preference(record.preference_key, record.preference_value)

    def remote_delete(self, record: SyncableRecord) -> None:
        self.remote.delete(self.entity_type, record.preference_key)

    def pull_since(self, cursor: int) -> List[Wire]:
        return self.remote.list_since(
            self.entity_type, cursor, user_id=self.session_remote_user_id()
        )

    def find_local(
        self, wire: Wire, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[SyncableRecord]:
        local = super().find_local(wire, conn=conn)
        if local is not None:
            return local
        user_id = self.id_map.resolve_local(EntityType.USERS, wire.get("user_id"), conn=conn)
        if user_id is None or not wire.get("preference_key"):
            return None
        return self.store.find_one(
            self.entity_type,
            conn=conn,
            user_id=user_id,
            preference_key=wire["preference_key"],
        )
