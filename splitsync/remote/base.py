"""Remote service boundary.

The sync engine talks to the authoritative backend only through
``RemoteService``. Every method either returns decoded JSON or raises
``RemoteError``; payloads carry remote identifiers only.
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from splitsync.types import EntityType, RemoteId

Wire = Dict[str, Any]


@runtime_checkable
class RemoteService(Protocol):
    """Typed RPC surface of the expense-sharing backend.

    Implementations: HttpRemoteService, plus in-memory fakes in tests.
    """

    def create(
        self, entity_type: EntityType, payload: Wire, parent_id: Optional[RemoteId] = None
    ) -> Wire:
        """Create a resource; the response carries its new remote id.

        ``parent_id`` scopes resources that live under a group.
        """
        ...

    def update(
        self,
        entity_type: EntityType,
        remote_id: RemoteId,
        payload: Wire,
        parent_id: Optional[RemoteId] = None,
    ) -> Wire:
        ...

    def delete(
        self, entity_type: EntityType, remote_id: RemoteId, parent_id: Optional[RemoteId] = None
    ) -> None:
        ...

    def list_since(
        self, entity_type: EntityType, since: int, user_id: Optional[RemoteId] = None
    ) -> List[Wire]:
        """Records changed after ``since`` (epoch milliseconds)."""
        ...

    # Payment splits live under their payment
    def create_split(self, payment_id: RemoteId, payload: Wire) -> Wire:
        ...

    def update_split(self, payment_id: RemoteId, split_id: RemoteId, payload: Wire) -> Wire:
        ...

    def delete_split(self, payment_id: RemoteId, split_id: RemoteId) -> None:
        ...

    def archive_group(self, group_id: RemoteId, user_id: RemoteId) -> Wire:
        ...

    def unarchive_group(self, group_id: RemoteId, user_id: RemoteId) -> None:
        ...

    def get_preference(self, key: str) -> Optional[Wire]:
        """The session user's preference for ``key``, or None if unset."""
        ...

    def update_preference(self, key: str, value: Optional[str]) -> Wire:
        ...

    def update_needs_reauthentication(self, account_id: str, needs_reauthentication: bool) -> None:
        ...

    def fetch_my_transactions(self) -> Wire:
        """Live transactions from the banking aggregator.

        Shape: ``{"transactions": [...], "accounts_needing_reauthentication":
        [{"account_id": ..., "institution_id": ...}]}``.
        """
        ...

    def health(self) -> bool:
        ...
