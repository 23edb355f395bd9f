"""Conflict and ordering policy for pulled records.

Unsynced local intent always outranks a pulled snapshot. Otherwise the remote
copy wins only when its timestamp is strictly newer than the local one.
"""

import logging
from enum import Enum
from typing import Any, Optional

from splitsync.storage.base import SyncableRecord
from splitsync.types import PUSHABLE_STATUSES, SyncStatus, parse_datetime

logger = logging.getLogger(__name__)


class Resolution(str, Enum):
    """What the pull phase does with one incoming record."""

    INSERT = "insert"  # No local counterpart
    OVERWRITE = "overwrite"  # Remote strictly newer
    SKIP_PENDING = "skip_pending"  # Local edit not yet pushed
    SKIP_STALE = "skip_stale"  # Remote not newer
    SKIP_CONFLICT = "skip_conflict"  # Local copy awaits conflict resolution
    SKIP_TOMBSTONE = "skip_tombstone"  # Deletion already confirmed locally

    @property
    def applies(self) -> bool:
        return self in (Resolution.INSERT, Resolution.OVERWRITE)


def is_update_needed(remote_updated_at: Any, local_updated_at: Any) -> bool:
    """True only when both timestamps parse and the remote one is strictly newer.

    Missing or unparseable timestamps never trigger an overwrite.
    """
    remote = parse_datetime(remote_updated_at)
    local = parse_datetime(local_updated_at)
    if remote is None or local is None:
        if remote_updated_at and remote is None:
            logger.debug(f"Unparseable remote timestamp: {remote_updated_at!r}")
        return False
    return remote > local


def decide(local: Optional[SyncableRecord], remote_updated_at: Any) -> Resolution:
    if local is None:
        return Resolution.INSERT
    if local.sync_status in PUSHABLE_STATUSES:
        return Resolution.SKIP_PENDING
    if local.sync_status == SyncStatus.CONFLICT:
        return Resolution.SKIP_CONFLICT
    if local.sync_status == SyncStatus.LOCALLY_DELETED:
        return Resolution.SKIP_TOMBSTONE
    if is_update_needed(remote_updated_at, local.updated_at):
        return Resolution.OVERWRITE
    return Resolution.SKIP_STALE
