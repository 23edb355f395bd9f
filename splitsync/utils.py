"""Filesystem and URL helpers shared across splitsync."""

import logging
import os
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse, urlunparse

logger = logging.getLogger(__name__)

LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


def get_splitsync_home() -> Path:
    """Directory holding the local database, credentials and config.

    Honors ``SPLITSYNC_HOME``; defaults to ``~/.splitsync``.
    """
    override = os.environ.get("SPLITSYNC_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".splitsync"


def validate_backend_url(url: str, *, allow_localhost_http: bool = True) -> Optional[str]:
    """Normalize the backend base URL that endpoint paths are appended to.

    The bearer token travels with every request, so plaintext http is only
    accepted for a backend on this machine. Credentials, query strings and
    fragments have no place in a base URL and are refused.

    Returns the URL without a trailing slash, or ``None`` when rejected.
    """
    if not url:
        return None
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("https", "http") or not parsed.hostname:
        logger.warning(f"Ignoring backend URL {url!r}: expected http(s)://host[/path]")
        return None
    if parsed.username or parsed.password or parsed.query or parsed.fragment:
        logger.warning(
            f"Ignoring backend URL for {parsed.hostname}: credentials, query or fragment present"
        )
        return None
    if parsed.scheme == "http" and not (
        allow_localhost_http and parsed.hostname in LOCAL_HOSTS
    ):
        logger.warning(f"Ignoring plaintext backend URL for {parsed.hostname}; use https")
        return None
    return urlunparse(parsed._replace(path=parsed.path.rstrip("/")))
