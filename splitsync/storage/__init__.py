"""splitsync storage backends.

Local-first storage using SQLite: record types, the keyed record store and
the local id -> remote id mapping table.
"""

from .base import (
    RECORD_TYPES,
    BankAccount,
    CurrencyConversion,
    DeviceToken,
    EntitySyncState,
    Group,
    GroupArchive,
    GroupDefaultSplit,
    GroupMember,
    Payment,
    PaymentSplit,
    Requisition,
    SyncableRecord,
    User,
    UserPreference,
    record_type_for,
)
from .id_map import IdMappingStore
from .sqlite import SQLiteStore

__all__ = [
    # Store
    "SQLiteStore",
    "IdMappingStore",
    "EntitySyncState",
    # Records
    "SyncableRecord",
    "User",
    "Group",
    "GroupMember",
    "GroupDefaultSplit",
    "Payment",
    "PaymentSplit",
    "BankAccount",
    "Requisition",
    "CurrencyConversion",
    "DeviceToken",
    "UserPreference",
    "GroupArchive",
    "RECORD_TYPES",
    "record_type_for",
]
