"""Row store adapter abstraction for Folio Browser.

Provides a uniform count/fetch interface over the two places rows can live:
- Remote (the data server, paginated over HTTP)
- Local (the DuckDB mirror filled by sync)
"""

from abc import ABC, abstractmethod
from typing import List, Mapping, Optional, TYPE_CHECKING

from ..models.query import QueryDescriptor
from ..models.row import Row

if TYPE_CHECKING:
    from ..cache.store import LocalCacheStore
    from ..config import Config

MODES = ("remote", "local")


class RowStoreAdapter(ABC):
    """Abstract base class for row stores.

    Implementations must apply the filter and sort rules in
    :mod:`folio_browser.utils.row_filter` (or an exact server-side
    equivalent) and expose alias-normalized rows only.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the mode tag of this adapter ("remote" or "local")."""
        pass

    @abstractmethod
    def count(self, filters: Optional[Mapping[str, str]] = None) -> int:
        """Count rows matching a filter set.

        Args:
            filters: Column -> substring pattern

        Returns:
            Number of matching rows

        Raises:
            SourceUnavailable: On transport or storage failure
        """
        pass

    @abstractmethod
    def fetch_page(self, descriptor: QueryDescriptor) -> List[Row]:
        """Fetch one page of rows.

        Args:
            descriptor: Filters, sort and page window

        Returns:
            At most ``descriptor.page_size`` normalized rows

        Raises:
            SourceUnavailable: On transport or storage failure
        """
        pass

    def close(self) -> None:
        """Release connections held by the adapter."""


def get_adapter(
    mode: str,
    config: "Config",
    store: Optional["LocalCacheStore"] = None,
) -> RowStoreAdapter:
    """Factory function to get the adapter for a data mode.

    Args:
        mode: "remote" or "local"
        config: Loaded configuration
        store: Local store to reuse (local mode only; opened from config if None)

    Returns:
        RowStoreAdapter instance

    Raises:
        ValueError: If mode is invalid
    """
    if mode == "remote":
        from .remote import RemoteAdapter

        remote = config.remote
        return RemoteAdapter(
            base_url=remote.base_url,
            token=remote.resolve_token(),
            data_path=remote.data_path,
            count_path=remote.count_path,
            timeout=remote.timeout_seconds,
        )

    elif mode == "local":
        from .local import LocalAdapter
        from ..cache.store import LocalCacheStore

        return LocalAdapter(store or LocalCacheStore(db_path=config.cache.db_path))

    else:
        raise ValueError(
            f"Invalid data mode: {mode}. Must be one of: {', '.join(MODES)}"
        )
