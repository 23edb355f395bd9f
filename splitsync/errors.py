"""Exception types for splitsync.

Synchronizers raise these internally; every per-record exception is caught at
the synchronizer boundary and converted into an outcome value, so only the
escape hatches and preconditions ever let one reach a caller.
"""

from typing import Any, Optional


class SplitsyncError(Exception):
    """Base class for all splitsync errors."""


class RemoteError(SplitsyncError):
    """Structured failure from the remote service.

    ``status_code`` is the HTTP-like status, or None when the request never
    produced a response (network down, timeout, DNS).
    """

    def __init__(self, status_code: Optional[int], message: str = ""):
        super().__init__(
            f"Remote call failed ({status_code}): {message}" if status_code else message
        )
        self.status_code = status_code
        self.message = message

    @property
    def is_forbidden(self) -> bool:
        return self.status_code == 403

    @property
    def is_transient(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in (408, 429)


class MissingDependencyError(SplitsyncError):
    """A referenced record has no identity on the other side yet.

    On push ``local_id`` names a record the server has not seen; on pull
    ``remote_id`` names a record not yet known locally.
    """

    def __init__(
        self,
        entity_type: str,
        local_id: Optional[int] = None,
        detail: str = "",
        remote_id: Optional[Any] = None,
    ):
        if remote_id is not None:
            message = f"No local record for remote {entity_type}:{remote_id}"
        else:
            message = f"No remote id for {entity_type}:{local_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.entity_type = entity_type
        self.local_id = local_id
        self.remote_id = remote_id


class ConversionError(SplitsyncError):
    """Local record and wire payload shapes do not line up."""


class IdMappingError(SplitsyncError):
    """Attempt to rebind a local id to a different remote id."""


class OwnershipConflictError(SplitsyncError):
    """The remote resource belongs to another principal (403)."""

    def __init__(self, entity_type: str, local_id: Optional[int], message: str = ""):
        super().__init__(
            message or f"{entity_type}:{local_id} is already claimed by someone else"
        )
        self.entity_type = entity_type
        self.local_id = local_id


class SyncInProgressError(SplitsyncError):
    """A push or pull for the same entity type is already running."""


class PreconditionError(SplitsyncError):
    """A sync run cannot start (no session, no network)."""
