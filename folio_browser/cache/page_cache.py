"""In-memory memo of already fetched pages.

Keyed by the exact query descriptor plus the data mode. Writes to the local
mirror never invalidate entries: a page fetched before a sync keeps showing
its old content until a different descriptor is requested or the cache is
cleared.
"""

import threading
from collections import OrderedDict
from typing import List, NamedTuple, Optional, Tuple

from ..models.query import QueryDescriptor
from ..models.row import Row


class CachedPage(NamedTuple):
    """Rows of one page plus the filtered total seen when it was fetched."""

    rows: List[Row]
    total: int


CacheKey = Tuple[str, str]


class PageResultCache:
    """Exact-match page cache owned by one query session."""

    def __init__(self, max_entries: int = 0):
        """Initialize the cache.

        Args:
            max_entries: Evict least recently used pages beyond this many
                entries (0 keeps everything)
        """
        self.max_entries = max_entries
        self._entries: "OrderedDict[CacheKey, CachedPage]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(descriptor: QueryDescriptor, mode: str) -> CacheKey:
        """Build the cache key for a request."""
        return (descriptor.cache_key(), mode)

    def get(self, descriptor: QueryDescriptor, mode: str) -> Optional[CachedPage]:
        """Look up a page.

        Args:
            descriptor: Exact descriptor of the request
            mode: "remote" or "local"

        Returns:
            Cached page or None on a miss
        """
        key = self.make_key(descriptor, mode)
        with self._lock:
            page = self._entries.get(key)
            if page is not None:
                self._entries.move_to_end(key)
            return page

    def put(self, descriptor: QueryDescriptor, mode: str, rows: List[Row], total: int) -> None:
        """Remember the rows fetched for a request.

        Args:
            descriptor: Descriptor the rows were fetched for
            mode: "remote" or "local"
            rows: Page rows
            total: Filtered row count at fetch time
        """
        key = self.make_key(descriptor, mode)
        with self._lock:
            self._entries[key] = CachedPage(list(rows), total)
            self._entries.move_to_end(key)
            if self.max_entries:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)

    def clear(self) -> None:
        """Forget every page."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
