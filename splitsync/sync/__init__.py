"""Sync engine: conflict policy, outcomes, orchestration and coordination."""

from .conflict import Resolution, decide, is_update_needed
from .coordinator import SyncCoordinator
from .orchestrator import EntitySynchronizer, SyncRun
from .results import (
    ApplyOutcome,
    BatchResult,
    EntitySyncResult,
    LiveFetchResult,
    OutcomeKind,
    PushOutcome,
    RunResult,
    RunStatus,
)
from .transactions import TransactionCache, TransactionFetcher

__all__ = [
    "SyncCoordinator",
    "EntitySynchronizer",
    "SyncRun",
    "Resolution",
    "decide",
    "is_update_needed",
    "ApplyOutcome",
    "BatchResult",
    "EntitySyncResult",
    "LiveFetchResult",
    "OutcomeKind",
    "PushOutcome",
    "RunResult",
    "RunStatus",
    "TransactionCache",
    "TransactionFetcher",
]
