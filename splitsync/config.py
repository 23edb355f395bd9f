"""Configuration loading for splitsync.

Credentials and settings come from files under ``get_splitsync_home()`` and
from environment variables.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from splitsync.utils import get_splitsync_home, validate_backend_url

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_TRANSACTION_COOLDOWN_MINUTES = 30
DEFAULT_MAX_TRANSACTION_CALLS_PER_DAY = 4


@dataclass
class SyncConfig:
    """Resolved settings for one sync client."""

    backend_url: Optional[str] = None
    auth_token: Optional[str] = None
    # Local id of the session user
    user_id: Optional[int] = None
    db_path: Optional[Path] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    transaction_cooldown_minutes: int = DEFAULT_TRANSACTION_COOLDOWN_MINUTES
    max_transaction_calls_per_day: int = DEFAULT_MAX_TRANSACTION_CALLS_PER_DAY

    @property
    def has_credentials(self) -> bool:
        return bool(self.backend_url and self.auth_token)

    def resolved_db_path(self) -> Path:
        return self.db_path or (get_splitsync_home() / "splitsync.db")


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-integer user id: {value!r}")
        return None


def load_config() -> SyncConfig:
    """Load configuration from config files or environment variables.

    Priority:
    1. $SPLITSYNC_HOME/credentials.json
    2. Environment variables (SPLITSYNC_BACKEND_URL, SPLITSYNC_AUTH_TOKEN,
       SPLITSYNC_USER_ID, SPLITSYNC_DB_PATH)
    3. $SPLITSYNC_HOME/config.json

    Environment variables override values read from credentials.json;
    config.json only fills whatever is still missing.
    """
    home = get_splitsync_home()

    creds = _read_json(home / "credentials.json")
    backend_url = creds.get("backend_url")
    # Accept both "auth_token" (preferred) and "token"
    auth_token = creds.get("auth_token") or creds.get("token")
    user_id = _as_int(creds.get("user_id"))
    db_path = creds.get("db_path")

    backend_url = os.environ.get("SPLITSYNC_BACKEND_URL") or backend_url
    auth_token = os.environ.get("SPLITSYNC_AUTH_TOKEN") or auth_token
    user_id = _as_int(os.environ.get("SPLITSYNC_USER_ID")) or user_id
    db_path = os.environ.get("SPLITSYNC_DB_PATH") or db_path

    config = _read_json(home / "config.json")
    backend_url = backend_url or config.get("backend_url")
    auth_token = auth_token or config.get("auth_token")
    user_id = user_id or _as_int(config.get("user_id"))
    db_path = db_path or config.get("db_path")

    if backend_url:
        backend_url = validate_backend_url(backend_url)

    return SyncConfig(
        backend_url=backend_url,
        auth_token=auth_token,
        user_id=user_id,
        db_path=Path(db_path).expanduser() if db_path else None,
        request_timeout=float(config.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)),
        transaction_cooldown_minutes=int(
            config.get("transaction_cooldown_minutes", DEFAULT_TRANSACTION_COOLDOWN_MINUTES)
        ),
        max_transaction_calls_per_day=int(
            config.get("max_transaction_calls_per_day", DEFAULT_MAX_TRANSACTION_CALLS_PER_DAY)
        ),
    )
