"""Remote service boundary and its HTTP implementation."""

from .base import RemoteService, Wire
from .http import HttpRemoteService

__all__ = ["RemoteService", "HttpRemoteService", "Wire"]
