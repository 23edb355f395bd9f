"""HTTP implementation of the remote service boundary.

Uses httpx with a bearer token. Responses wrapped as ``{"data": ...}`` are
unwrapped; HTTP and transport failures become ``RemoteError``.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from splitsync.errors import RemoteError
from splitsync.types import EntityType, RemoteId

from .base import Wire

logger = logging.getLogger(__name__)

# Per-entity-type endpoints. ``{id}`` is the remote id, ``{parent}`` the
# owning group for group-scoped resources.
ENDPOINTS: Dict[EntityType, Dict[str, str]] = {
    EntityType.USERS: {
        "create": "/api/users/create",
        "item": "/api/users/{id}",
        "changes": "/api/users/changes",
    },
    EntityType.GROUPS: {
        "create": "/api/groups",
        "item": "/api/groups/{id}",
        "changes": "/api/groups/changes",
    },
    EntityType.GROUP_MEMBERS: {
        "create": "/api/groups/{parent}/members",
        "item": "/api/groups/{parent}/members/{id}",
        "changes": "/api/groups/members/changes",
    },
    EntityType.GROUP_DEFAULT_SPLITS: {
        "create": "/api/groups/{parent}/default-splits",
        "item": "/api/groups/{parent}/default-splits/{id}",
        "changes": "/api/groups/default-splits/changes",
    },
    EntityType.USER_PREFERENCES: {
        "create": "/api/users/me/preferences",
        "item": "/api/users/me/preferences/{id}",
        "changes": "/api/users/me/preferences/since",
    },
    EntityType.GROUP_ARCHIVES: {
        "changes": "/api/groups/archives/me",
    },
    EntityType.REQUISITIONS: {
        "changes": "/api/gocardless/requisition/changes",
    },
    EntityType.BANK_ACCOUNTS: {
        "create": "/api/gocardless/addAccount",
        "item": "/api/gocardless/accounts/{id}",
        "changes": "/api/gocardless/changes",
    },
    EntityType.PAYMENTS: {
        "create": "/api/payments",
        "item": "/api/payments/{id}",
        "changes": "/api/payments/changes",
    },
    EntityType.CURRENCY_CONVERSIONS: {
        "create": "/api/payments/currency-conversions",
        "item": "/api/payments/currency-conversions/{id}",
        "changes": "/api/payments/currency-conversions/changes",
    },
    EntityType.DEVICE_TOKENS: {
        "create": "/api/notifications/register-device",
        "item": "/api/notifications/unregister-device/{id}",
    },
}

# Change feeds that take the cursor under a different query parameter
CURSOR_PARAMS = {EntityType.USER_PREFERENCES: "timestamp"}

# Change feeds that wrap each record with related context
CHANGE_ITEM_KEYS = {EntityType.CURRENCY_CONVERSIONS: "currency_conversion"}


def _unwrap(body: Any) -> Any:
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body.get("detail") or body)[:200]
    return str(body)[:200]


class HttpRemoteService:
    """RemoteService over the backend's REST API."""

    def __init__(
        self,
        backend_url: str,
        auth_token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.backend_url = backend_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.backend_url,
            headers={
                "Authorization": f"Bearer {auth_token}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # === Plumbing ===

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.debug(f"{method} {path} -> {e.response.status_code}: {message}")
            raise RemoteError(e.response.status_code, message) from e
        except httpx.TransportError as e:
            logger.debug(f"{method} {path} transport failure: {e}")
            raise RemoteError(None, str(e) or type(e).__name__) from e

        if not response.content:
            return None
        try:
            return _unwrap(response.json())
        except ValueError as e:
            raise RemoteError(response.status_code, f"Invalid JSON in response: {e}") from e

    def _path(
        self,
        entity_type: EntityType,
        kind: str,
        remote_id: Optional[RemoteId] = None,
        parent_id: Optional[RemoteId] = None,
    ) -> str:
        template = ENDPOINTS.get(EntityType(entity_type), {}).get(kind)
        if template is None:
            raise RemoteError(405, f"{entity_type.value} does not support {kind}")
        if "{parent}" in template and parent_id is None:
            raise RemoteError(400, f"{entity_type.value} {kind} requires a parent id")
        return template.format(id=remote_id, parent=parent_id)

    # === Generic resources ===

    def create(
        self, entity_type: EntityType, payload: Wire, parent_id: Optional[RemoteId] = None
    ) -> Wire:
        return self._request(
            "POST", self._path(entity_type, "create", parent_id=parent_id), json=payload
        ) or {}

    def update(
        self,
        entity_type: EntityType,
        remote_id: RemoteId,
        payload: Wire,
        parent_id: Optional[RemoteId] = None,
    ) -> Wire:
        return self._request(
            "PUT", self._path(entity_type, "item", remote_id, parent_id), json=payload
        ) or {}

    def delete(
        self, entity_type: EntityType, remote_id: RemoteId, parent_id: Optional[RemoteId] = None
    ) -> None:
        self._request("DELETE", self._path(entity_type, "item", remote_id, parent_id))

    def list_since(
        self, entity_type: EntityType, since: int, user_id: Optional[RemoteId] = None
    ) -> List[Wire]:
        entity_type = EntityType(entity_type)
        params: Dict[str, Any] = {CURSOR_PARAMS.get(entity_type, "since"): since}
        if user_id is not None:
            params["userId"] = user_id
        body = self._request("GET", self._path(entity_type, "changes"), params=params) or []
        if isinstance(body, dict):
            # Payment feeds may come as {"payments": [...]}
            body = body.get(entity_type.value, [])
        item_key = CHANGE_ITEM_KEYS.get(entity_type)
        if item_key:
            body = [item.get(item_key, item) for item in body]
        return list(body)

    # === Payment splits ===

    def create_split(self, payment_id: RemoteId, payload: Wire) -> Wire:
        return self._request("POST", f"/api/payments/{payment_id}/splits", json=payload) or {}

    def update_split(self, payment_id: RemoteId, split_id: RemoteId, payload: Wire) -> Wire:
        return (
            self._request("PUT", f"/api/payments/{payment_id}/splits/{split_id}", json=payload)
            or {}
        )

    def delete_split(self, payment_id: RemoteId, split_id: RemoteId) -> None:
        self._request("DELETE", f"/api/payments/{payment_id}/splits/{split_id}")

    # === Group archives ===

    def archive_group(self, group_id: RemoteId, user_id: RemoteId) -> Wire:
        return (
            self._request("POST", f"/api/groups/archive/{group_id}", params={"userId": user_id})
            or {}
        )

    def unarchive_group(self, group_id: RemoteId, user_id: RemoteId) -> None:
        self._request("POST", f"/api/groups/restore/{group_id}", params={"userId": user_id})

    # === Preferences ===

    def get_preference(self, key: str) -> Optional[Wire]:
        try:
            return self._request("GET", f"/api/users/me/preferences/{key}")
        except RemoteError as e:
            if e.status_code == 404:
                return None
            raise

    def update_preference(self, key: str, value: Optional[str]) -> Wire:
        return (
            self._request("PUT", f"/api/users/me/preferences/{key}", json={"value": value}) or {}
        )

    # === Banking aggregator ===

    def update_needs_reauthentication(self, account_id: str, needs_reauthentication: bool) -> None:
        self._request(
            "PUT",
            f"/api/accounts/{account_id}/needs-reauthentication",
            json=needs_reauthentication,
        )

    def fetch_my_transactions(self) -> Wire:
        body = self._request("GET", "/api/gocardless/transactions/me") or {}
        if isinstance(body, list):
            return {"transactions": body, "accounts_needing_reauthentication": []}
        reauth = body.get("accounts_needing_reauthentication")
        if reauth is None:
            reauth = body.get("accountsNeedingReauthentication", [])
        return {
            "transactions": body.get("transactions", []),
            "accounts_needing_reauthentication": [
                {
                    "account_id": item.get("account_id") or item.get("accountId"),
                    "institution_id": item.get("institution_id") or item.get("institutionId"),
                }
                for item in reauth
            ],
        }

    def health(self) -> bool:
        try:
            self._request("GET", "/api/health")
        except RemoteError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return True
