"""Local adapter: serves rows from the DuckDB mirror."""

from typing import List, Mapping, Optional

from .base import RowStoreAdapter
from ..cache.store import LocalCacheStore
from ..models.query import QueryDescriptor
from ..models.row import Row


class LocalAdapter(RowStoreAdapter):
    """Row store backed by the local mirror filled by sync."""

    def __init__(self, store: LocalCacheStore):
        """Initialize with the mirror to read from.

        Args:
            store: Local cache store
        """
        self.store = store

    @property
    def name(self) -> str:
        return "local"

    def count(self, filters: Optional[Mapping[str, str]] = None) -> int:
        return self.store.count(filters)

    def fetch_page(self, descriptor: QueryDescriptor) -> List[Row]:
        return self.store.fetch_page(descriptor)

    def close(self) -> None:
        self.store.close()
