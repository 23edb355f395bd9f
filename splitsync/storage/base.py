"""Record types for splitsync storage.

Every syncable entity shares the same sync envelope (local id, remote id,
sync status, timestamps, soft-delete marker) plus its own fields. Class-level
metadata tells the store which table a record lives in and tells the
synchronizers which fields are local foreign keys that must be translated
through the identifier mapping store before leaving the device.
"""

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Type

from splitsync.types import EntityType, RemoteId, SyncStatus, utc_now


@dataclass
class SyncableRecord:
    """Sync envelope shared by every entity type."""

    entity_type: ClassVar[EntityType]
    # Local foreign-key field -> entity type it references.
    foreign_keys: ClassVar[Dict[str, EntityType]] = {}
    # Field carrying the remote identity in wire payloads.
    wire_id_field: ClassVar[str] = "id"

    local_id: Optional[int] = None
    remote_id: Optional[RemoteId] = None
    sync_status: SyncStatus = SyncStatus.PENDING_SYNC
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    deleted_at: Optional[str] = None

    @property
    def is_tombstone(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def envelope_fields(cls) -> List[str]:
        return [f.name for f in fields(SyncableRecord)]

    @classmethod
    def data_fields(cls) -> List[str]:
        """Entity-specific field names (everything outside the envelope)."""
        envelope = set(cls.envelope_fields())
        return [f.name for f in fields(cls) if f.name not in envelope]

    @classmethod
    def column_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]


@dataclass
class User(SyncableRecord):
    """An app user (the session user or anyone they split with)."""

    entity_type: ClassVar[EntityType] = EntityType.USERS
    foreign_keys: ClassVar[Dict[str, EntityType]] = {"invited_by": EntityType.USERS}

    username: str = ""
    email: Optional[str] = None
    default_currency: str = "GBP"
    is_provisional: bool = False
    invited_by: Optional[int] = None


@dataclass
class Group(SyncableRecord):
    entity_type: ClassVar[EntityType] = EntityType.GROUPS

    name: str = ""
    description: Optional[str] = None
    default_currency: str = "GBP"
    invite_link: Optional[str] = None
    group_img: Optional[str] = None


@dataclass
class GroupMember(SyncableRecord):
    """Membership of a user in a group."""

    entity_type: ClassVar[EntityType] = EntityType.GROUP_MEMBERS
    foreign_keys: ClassVar[Dict[str, EntityType]] = {
        "group_id": EntityType.GROUPS,
        "user_id": EntityType.USERS,
    }

    group_id: Optional[int] = None
    user_id: Optional[int] = None
    removed_at: Optional[str] = None


@dataclass
class GroupDefaultSplit(SyncableRecord):
    """Default share of a member in a group's new payments."""

    entity_type: ClassVar[EntityType] = EntityType.GROUP_DEFAULT_SPLITS
    foreign_keys: ClassVar[Dict[str, EntityType]] = {
        "group_id": EntityType.GROUPS,
        "user_id": EntityType.USERS,
    }

    group_id: Optional[int] = None
    user_id: Optional[int] = None
    percentage: Optional[float] = None
    amount: Optional[float] = None


@dataclass
class Payment(SyncableRecord):
    """A payment in a group. Owns a set of PaymentSplit records."""

    entity_type: ClassVar[EntityType] = EntityType.PAYMENTS
    foreign_keys: ClassVar[Dict[str, EntityType]] = {
        "group_id": EntityType.GROUPS,
        "paid_by_user_id": EntityType.USERS,
        "created_by": EntityType.USERS,
        "updated_by": EntityType.USERS,
    }

    group_id: Optional[int] = None
    paid_by_user_id: Optional[int] = None
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    amount: float = 0.0
    currency: str = "GBP"
    description: Optional[str] = None
    notes: Optional[str] = None
    payment_date: Optional[str] = None
    payment_type: str = "spent"
    split_mode: str = "equally"
    transaction_id: Optional[str] = None
    institution_id: Optional[str] = None


@dataclass
class PaymentSplit(SyncableRecord):
    """One user's share of a payment."""

    entity_type: ClassVar[EntityType] = EntityType.PAYMENT_SPLITS
    foreign_keys: ClassVar[Dict[str, EntityType]] = {
        "payment_id": EntityType.PAYMENTS,
        "user_id": EntityType.USERS,
        "created_by": EntityType.USERS,
        "updated_by": EntityType.USERS,
    }

    payment_id: Optional[int] = None
    user_id: Optional[int] = None
    amount: float = 0.0
    currency: str = "GBP"
    created_by: Optional[int] = None
    updated_by: Optional[int] = None


@dataclass
class BankAccount(SyncableRecord):
    """A bank account linked through the banking aggregator."""

    entity_type: ClassVar[EntityType] = EntityType.BANK_ACCOUNTS
    foreign_keys: ClassVar[Dict[str, EntityType]] = {"user_id": EntityType.USERS}
    wire_id_field: ClassVar[str] = "account_id"

    account_id: str = ""
    user_id: Optional[int] = None
    requisition_id: Optional[str] = None
    institution_id: Optional[str] = None
    iban: Optional[str] = None
    currency: Optional[str] = None
    owner_name: Optional[str] = None
    needs_reauthentication: bool = False


@dataclass
class Requisition(SyncableRecord):
    """Aggregator consent record. Server-authoritative, pulled only."""

    entity_type: ClassVar[EntityType] = EntityType.REQUISITIONS
    wire_id_field: ClassVar[str] = "requisition_id"

    requisition_id: str = ""
    user_id: Optional[RemoteId] = None
    institution_id: Optional[str] = None
    reference: Optional[str] = None


@dataclass
class CurrencyConversion(SyncableRecord):
    """Conversion applied to a payment's amount."""

    entity_type: ClassVar[EntityType] = EntityType.CURRENCY_CONVERSIONS
    foreign_keys: ClassVar[Dict[str, EntityType]] = {
        "payment_id": EntityType.PAYMENTS,
        "created_by": EntityType.USERS,
        "updated_by": EntityType.USERS,
    }

    payment_id: Optional[int] = None
    original_currency: str = ""
    original_amount: float = 0.0
    final_currency: str = ""
    final_amount: float = 0.0
    exchange_rate: float = 1.0
    source: Optional[str] = None
    created_by: Optional[int] = None
    updated_by: Optional[int] = None


@dataclass
class DeviceToken(SyncableRecord):
    entity_type: ClassVar[EntityType] = EntityType.DEVICE_TOKENS
    foreign_keys: ClassVar[Dict[str, EntityType]] = {"user_id": EntityType.USERS}

    user_id: Optional[int] = None
    fcm_token: str = ""
    device_type: str = "android"


@dataclass
class UserPreference(SyncableRecord):
    entity_type: ClassVar[EntityType] = EntityType.USER_PREFERENCES
    foreign_keys: ClassVar[Dict[str, EntityType]] = {"user_id": EntityType.USERS}

    user_id: Optional[int] = None
    preference_key: str = ""
    preference_value: Optional[str] = None


@dataclass
class GroupArchive(SyncableRecord):
    """A user's archive marker on a group. Deleting it unarchives."""

    entity_type: ClassVar[EntityType] = EntityType.GROUP_ARCHIVES
    foreign_keys: ClassVar[Dict[str, EntityType]] = {
        "user_id": EntityType.USERS,
        "group_id": EntityType.GROUPS,
    }

    user_id: Optional[int] = None
    group_id: Optional[int] = None
    archived_at: str = field(default_factory=utc_now)


@dataclass
class EntitySyncState:
    """Bookkeeping for one entity type (pull cursor and last outcome)."""

    entity_type: EntityType
    # Epoch milliseconds; 0 means "never pulled"
    last_sync_timestamp: int = 0
    sync_status: Optional[str] = None
    last_sync_result: Optional[str] = None
    update_count: int = 0
    updated_at: Optional[str] = None


RECORD_TYPES: Dict[EntityType, Type[SyncableRecord]] = {
    cls.entity_type: cls
    for cls in (
        User,
        Group,
        GroupMember,
        GroupDefaultSplit,
        Payment,
        PaymentSplit,
        BankAccount,
        Requisition,
        CurrencyConversion,
        DeviceToken,
        UserPreference,
        GroupArchive,
    )
}


def record_type_for(entity_type: Any) -> Type[SyncableRecord]:
    """Look up the record class for an entity type name."""
    try:
        return RECORD_TYPES[EntityType(entity_type)]
    except ValueError:
        raise ValueError(f"Unknown entity type: {entity_type}")
