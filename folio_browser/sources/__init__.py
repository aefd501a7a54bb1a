"""Row store adapters (remote server and local mirror)."""

from .base import MODES, RowStoreAdapter, get_adapter
from .local import LocalAdapter
from .remote import RemoteAdapter

__all__ = [
    "MODES",
    "RowStoreAdapter",
    "get_adapter",
    "LocalAdapter",
    "RemoteAdapter",
]
