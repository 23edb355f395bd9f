"""User synchronization."""

import logging

from splitsync.types import EntityType

from ..orchestrator import EntitySynchronizer

logger = logging.getLogger(__name__)


class UserSynchronizer(EntitySynchronizer):
    """Users sync first; everything else references them.

    ``invited_by`` may point at a user this device has never seen, so a
    pulled user keeps it unset instead of failing.
    """

    entity_type = EntityType.USERS
    batch_size = 50
    optional_foreign_keys = frozenset({"invited_by"})
