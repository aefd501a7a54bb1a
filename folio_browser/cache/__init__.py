"""Local persistence and in-memory caching for Folio Browser.

Provides:
- A DuckDB mirror of the remote dataset, queried by full scan
- A per-session memo of already fetched pages
"""

from .schema import CacheSchema
from .store import LocalCacheStore
from .page_cache import PageResultCache, CachedPage

__all__ = [
    "CacheSchema",
    "LocalCacheStore",
    "PageResultCache",
    "CachedPage",
]
