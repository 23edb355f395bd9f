"""Outcome values produced by the sync engine.

Per-record failures are reported as values, never as exceptions, so one bad
record cannot unwind a whole batch.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from splitsync.storage.base import SyncableRecord
from splitsync.types import EntityType

from .conflict import Resolution


class OutcomeKind(str, Enum):
    OK = "ok"
    TRANSIENT_ERROR = "transient_error"
    OWNERSHIP_CONFLICT = "ownership_conflict"
    MISSING_DEPENDENCY = "missing_dependency"
    INVALID = "invalid"
    LOCAL_STORE_ERROR = "local_store_error"


@dataclass
class PushOutcome:
    """Result of pushing one record."""

    kind: OutcomeKind
    record: Optional[SyncableRecord] = None
    message: Optional[str] = None
    # Outcomes of owned records pushed along with this one (payment splits)
    children: List["PushOutcome"] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.OK

    @classmethod
    def success(cls, record: SyncableRecord) -> "PushOutcome":
        return cls(OutcomeKind.OK, record)

    @classmethod
    def transient(cls, record: SyncableRecord, message: str) -> "PushOutcome":
        return cls(OutcomeKind.TRANSIENT_ERROR, record, message)

    @classmethod
    def ownership_conflict(cls, record: SyncableRecord, message: str) -> "PushOutcome":
        return cls(OutcomeKind.OWNERSHIP_CONFLICT, record, message)

    @classmethod
    def missing_dependency(cls, record: SyncableRecord, message: str) -> "PushOutcome":
        return cls(OutcomeKind.MISSING_DEPENDENCY, record, message)

    @classmethod
    def invalid(cls, record: SyncableRecord, message: str) -> "PushOutcome":
        return cls(OutcomeKind.INVALID, record, message)

    @classmethod
    def local_store_error(cls, record: SyncableRecord, message: str) -> "PushOutcome":
        return cls(OutcomeKind.LOCAL_STORE_ERROR, record, message)


@dataclass
class ApplyOutcome:
    """Result of applying one pulled record."""

    resolution: Resolution
    record: Optional[SyncableRecord] = None
    # Failures of owned records applied along with this one (payment splits)
    errors: List[str] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.resolution.applies


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class BatchResult:
    """Counts for one push or pull phase of one entity type."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: List[str] = field(default_factory=list)
    conflicts: List[int] = field(default_factory=list)

    @property
    def status(self) -> RunStatus:
        return RunStatus.PARTIAL_SUCCESS if self.failed else RunStatus.SUCCESS

    def __str__(self) -> str:
        if self.failed:
            return f"PartialSuccess({self.succeeded}, {self.failed})"
        return f"Success({self.succeeded})"


@dataclass
class EntitySyncResult:
    entity_type: EntityType
    pushed: int = 0
    push_failed: int = 0
    pulled: int = 0
    pull_failed: int = 0
    skipped: int = 0
    # Local ids moved to CONFLICT during this run
    conflicts: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed(self) -> int:
        return self.push_failed + self.pull_failed

    @property
    def succeeded(self) -> int:
        return self.pushed + self.pulled

    def add_push(self, batch: BatchResult) -> None:
        self.pushed += batch.succeeded
        self.push_failed += batch.failed
        self.skipped += batch.skipped
        self.conflicts.extend(batch.conflicts)
        self.errors.extend(batch.errors)
        self.cancelled = self.cancelled or batch.cancelled

    def add_pull(self, batch: BatchResult) -> None:
        self.pulled += batch.succeeded
        self.pull_failed += batch.failed
        self.skipped += batch.skipped
        self.errors.extend(batch.errors)
        self.cancelled = self.cancelled or batch.cancelled


@dataclass
class LiveFetchResult:
    """Outcome of a live bank-transaction refresh."""

    status: RunStatus
    fetched: int = 0
    failed: int = 0
    message: Optional[str] = None


@dataclass
class RunResult:
    """Aggregate result of one sync run."""

    status: RunStatus
    entities: Dict[EntityType, EntitySyncResult] = field(default_factory=dict)
    live_fetch: Optional[LiveFetchResult] = None
    error: Optional[str] = None
    cancelled: bool = False
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def succeeded(self) -> int:
        return sum(r.succeeded for r in self.entities.values())

    @property
    def failed(self) -> int:
        total = sum(r.failed for r in self.entities.values())
        if self.live_fetch is not None and self.live_fetch.status == RunStatus.ERROR:
            total += 1
        return total

    @property
    def conflicts(self) -> Dict[EntityType, List[int]]:
        return {et: r.conflicts for et, r in self.entities.items() if r.conflicts}

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "entities": {
                et.value: {
                    "pushed": r.pushed,
                    "push_failed": r.push_failed,
                    "pulled": r.pulled,
                    "pull_failed": r.pull_failed,
                    "skipped": r.skipped,
                    "conflicts": r.conflicts,
                    "errors": r.errors,
                }
                for et, r in self.entities.items()
            },
            "live_fetch": (
                {
                    "status": self.live_fetch.status.value,
                    "fetched": self.live_fetch.fetched,
                    "failed": self.live_fetch.failed,
                    "message": self.live_fetch.message,
                }
                if self.live_fetch
                else None
            ),
        }
