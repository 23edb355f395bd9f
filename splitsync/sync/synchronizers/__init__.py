"""Entity synchronizers, one per entity type."""

from typing import Dict, List, Type

from splitsync.types import SYNC_ORDER, EntityType

from ..orchestrator import EntitySynchronizer
from .archives import GroupArchiveSynchronizer
from .bank_accounts import BankAccountSynchronizer
from .currency_conversions import CurrencyConversionSynchronizer
from .device_tokens import DeviceTokenSynchronizer
from .groups import GroupDefaultSplitSynchronizer, GroupMemberSynchronizer, GroupSynchronizer
from .payments import PaymentSplitSynchronizer, PaymentSynchronizer
from .preferences import UserPreferenceSynchronizer
from .requisitions import RequisitionSynchronizer
from .users import UserSynchronizer

SYNCHRONIZER_TYPES: Dict[EntityType, Type[EntitySynchronizer]] = {
    cls.entity_type: cls
    for cls in (
        UserSynchronizer,
        GroupSynchronizer,
        GroupMemberSynchronizer,
        GroupDefaultSplitSynchronizer,
        UserPreferenceSynchronizer,
        GroupArchiveSynchronizer,
        RequisitionSynchronizer,
        BankAccountSynchronizer,
        PaymentSynchronizer,
        CurrencyConversionSynchronizer,
        DeviceTokenSynchronizer,
    )
}


def build_synchronizers(store, id_map, remote, user_id=None, **kwargs) -> List[EntitySynchronizer]:
    """One synchronizer per entity type, in dependency order."""
    return [
        SYNCHRONIZER_TYPES[entity_type](store, id_map, remote, user_id=user_id, **kwargs)
        for entity_type in SYNC_ORDER
    ]


__all__ = [
    "SYNCHRONIZER_TYPES",
    "build_synchronizers",
    "UserSynchronizer",
    "GroupSynchronizer",
    "GroupMemberSynchronizer",
    "GroupDefaultSplitSynchronizer",
    "UserPreferenceSynchronizer",
    "GroupArchiveSynchronizer",
    "RequisitionSynchronizer",
    "BankAccountSynchronizer",
    "PaymentSynchronizer",
    "PaymentSplitSynchronizer",
    "CurrencyConversionSynchronizer",
    "DeviceTokenSynchronizer",
]
