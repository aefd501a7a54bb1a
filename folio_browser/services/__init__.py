"""Sync, export and query session services."""

from .export_engine import ExportEngine, ExportResult, build_filename
from .jobs import BulkJobGuard
from .session import PageView, QuerySession
from .sync_engine import SyncEngine, SyncResult

__all__ = [
    "BulkJobGuard",
    "ExportEngine",
    "ExportResult",
    "PageView",
    "QuerySession",
    "SyncEngine",
    "SyncResult",
    "build_filename",
]
