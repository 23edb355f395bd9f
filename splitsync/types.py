"""
Shared sync types for splitsync.

The vocabulary shared by storage, synchronizers and the coordinator:
timestamps, the sync-status lifecycle tag and the entity-type names that
key every table, id mapping and cursor.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple, Union

# Identifier assigned by the remote authority. Most entities get integer ids;
# bank accounts and requisitions carry aggregator-issued string ids.
RemoteId = Union[int, str]


# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string.

    Naive values are assumed to be UTC so that local and remote timestamps
    always compare. Returns None for empty or unparseable input.
    """
    if not s:
        return None
    if isinstance(s, datetime):
        dt = s
    else:
        try:
            dt = datetime.fromisoformat(str(s).replace("Z", "+00:00"))
        except (TypeError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_epoch_millis(dt: datetime) -> int:
    """Convert an aware datetime into epoch milliseconds (the pull cursor unit)."""
    return int(dt.timestamp() * 1000)


def from_epoch_millis(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


# === Enums ===


class SyncStatus(str, Enum):
    """Lifecycle tag attached to every syncable record."""

    PENDING_SYNC = "PENDING_SYNC"  # Local change not yet pushed
    SYNCED = "SYNCED"  # Matches the remote copy
    SYNC_FAILED = "SYNC_FAILED"  # Last push failed, retried next run
    LOCALLY_DELETED = "LOCALLY_DELETED"  # Deletion confirmed (terminal)
    CONFLICT = "CONFLICT"  # Ownership dispute, never retried automatically


# Statuses the push phase picks up. CONFLICT and LOCALLY_DELETED are terminal
# until something outside the sync engine moves them.
PUSHABLE_STATUSES: Tuple[SyncStatus, ...] = (SyncStatus.PENDING_SYNC, SyncStatus.SYNC_FAILED)


class EntityType(str, Enum):
    """Entity types known to the sync engine. Values double as table names."""

    USERS = "users"
    GROUPS = "groups"
    GROUP_MEMBERS = "group_members"
    GROUP_DEFAULT_SPLITS = "group_default_splits"
    USER_PREFERENCES = "user_preferences"
    GROUP_ARCHIVES = "group_archives"
    REQUISITIONS = "requisitions"
    BANK_ACCOUNTS = "bank_accounts"
    PAYMENTS = "payments"
    PAYMENT_SPLITS = "payment_splits"
    CURRENCY_CONVERSIONS = "currency_conversions"
    DEVICE_TOKENS = "device_tokens"


# Order in which a full run visits entity types: users and groups before
# memberships, groups before payments, payments before conversions. Payment
# splits ride along with their payment and are not listed separately.
SYNC_ORDER: Tuple[EntityType, ...] = (
    EntityType.USERS,
    EntityType.GROUPS,
    EntityType.GROUP_MEMBERS,
    EntityType.GROUP_DEFAULT_SPLITS,
    EntityType.USER_PREFERENCES,
    EntityType.GROUP_ARCHIVES,
    EntityType.REQUISITIONS,
    EntityType.BANK_ACCOUNTS,
    EntityType.PAYMENTS,
    EntityType.CURRENCY_CONVERSIONS,
    EntityType.DEVICE_TOKENS,
)
