"""
splitsync - offline-first sync core for shared expenses.

Local SQLite copies of users, groups, payments and banking records, kept in
step with the authoritative backend.
"""

from .storage import IdMappingStore, SQLiteStore
from .sync import RunStatus, SyncCoordinator

try:
    from importlib.metadata import version

    __version__ = version("splitsync")
except Exception:
    __version__ = "0.0.0"

__all__ = ["SQLiteStore", "IdMappingStore", "SyncCoordinator", "RunStatus"]
