"""Currency conversion synchronization."""

from splitsync.types import EntityType

from ..orchestrator import EntitySynchronizer


class CurrencyConversionSynchronizer(EntitySynchronizer):
    """Conversions reference their payment, so they sync after payments.

    Computing conversions is someone else's job; this only moves the
    records and propagates their deletion.
    """

    entity_type = EntityType.CURRENCY_CONVERSIONS
    batch_size = 50
