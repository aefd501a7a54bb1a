"""Query session: visible page state, request fencing and bulk jobs.

A session owns everything that used to be process-wide mutable state: the
page result cache, the busy flag for bulk jobs, the current data mode and
the page currently on display. Page requests may overlap (e.g. one per
keystroke while a filter is typed); each response is applied only if it
still answers the latest request.
"""

import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from pydantic import BaseModel, Field

from .export_engine import ExportEngine, ExportResult
from .jobs import BulkJobGuard
from .sync_engine import SyncEngine, SyncResult
from ..cache.page_cache import PageResultCache
from ..cache.store import LocalCacheStore
from ..config import Config
from ..models.progress import Progress
from ..models.query import DEFAULT_PAGE_SIZE, QueryDescriptor, plan, require_filters
from ..models.row import DEFAULT_SORT_COLUMN, Row, value_of
from ..sources.base import MODES, RowStoreAdapter, get_adapter
from ..sources.local import LocalAdapter
from ..utils.error_handling import SourceUnavailable, Unauthorized, create_user_friendly_error

logger = logging.getLogger(__name__)

RequestToken = Tuple[QueryDescriptor, str]

COMPANY_OPTIONS_LIMIT = 500


def page_count(total: int, page_size: int) -> int:
    """Number of pages needed for ``total`` rows (0 for an empty result)."""
    if total <= 0:
        return 0
    return math.ceil(total / page_size)


def _sorted_names(names: Iterable[str]) -> List[str]:
    return sorted(names, key=lambda name: (name.casefold(), name))


class PageView(BaseModel):
    """The page currently shown to the user."""

    descriptor: Optional[QueryDescriptor] = Field(
        default=None, description="Descriptor actually served (page clamped)"
    )
    mode: str = Field(default="remote")
    rows: List[Row] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    total_pages: int = Field(default=0, ge=0)
    error: Optional[str] = Field(default=None)
    from_cache: bool = Field(default=False)
    stale: bool = Field(
        default=False, description="True if a newer request superseded this one"
    )


class QuerySession:
    """Per-user query state over the remote and local row stores."""

    def __init__(
        self,
        adapters: Mapping[str, RowStoreAdapter],
        page_cache: Optional[PageResultCache] = None,
        job_guard: Optional[BulkJobGuard] = None,
        mode: str = "remote",
        default_page_size: int = DEFAULT_PAGE_SIZE,
        default_sort_column: str = DEFAULT_SORT_COLUMN,
        sync_engine: Optional[SyncEngine] = None,
        export_engine: Optional[ExportEngine] = None,
        max_workers: int = 4,
    ):
        """Initialize the session.

        Args:
            adapters: Mode name -> adapter ("remote" and/or "local")
            page_cache: Page memo (a new unbounded one if None)
            job_guard: Single-flight guard for sync/export
            mode: Initial data mode
            default_page_size: Planner default page size
            default_sort_column: Planner default sort column
            sync_engine: Engine used by :meth:`sync` (built from the remote
                and local adapters if None)
            export_engine: Engine used by :meth:`export`
            max_workers: Threads serving :meth:`request_page`
        """
        self.adapters: Dict[str, RowStoreAdapter] = dict(adapters)
        self.page_cache = page_cache if page_cache is not None else PageResultCache()
        self.job_guard = job_guard or BulkJobGuard()
        self.default_page_size = default_page_size
        self.default_sort_column = default_sort_column
        self.export_engine = export_engine or ExportEngine()

        if sync_engine is None:
            remote = self.adapters.get("remote")
            local = self.adapters.get("local")
            if remote is not None and isinstance(local, LocalAdapter):
                sync_engine = SyncEngine(remote, local.store)
        self.sync_engine = sync_engine

        self._check_mode(mode)
        self._mode = mode
        self._view = PageView(mode=mode)
        self._current: Optional[RequestToken] = None
        self._pending: Optional[Future] = None
        self._companies: Set[str] = set()
        self._state_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="folio-page"
        )

    @classmethod
    def from_config(cls, config: Config, mode: Optional[str] = None) -> "QuerySession":
        """Build a session with both adapters wired from configuration.

        Args:
            config: Loaded configuration
            mode: Initial data mode (default "remote")

        Returns:
            QuerySession
        """
        store = LocalCacheStore(db_path=config.cache.db_path)
        remote = get_adapter("remote", config)
        local = get_adapter("local", config, store=store)
        return cls(
            adapters={"remote": remote, "local": local},
            page_cache=PageResultCache(max_entries=config.cache.page_cache_entries),
            mode=mode or "remote",
            default_page_size=config.query.default_page_size,
            default_sort_column=config.query.default_sort_column,
            sync_engine=SyncEngine(remote, store, chunk_size=config.sync.chunk_size),
            export_engine=ExportEngine(chunk_size=config.export.chunk_size),
        )

    # === State ===

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def view(self) -> PageView:
        """The page currently on display."""
        with self._state_lock:
            return self._view

    def _check_mode(self, mode: str) -> None:
        if mode not in MODES:
            raise ValueError(f"Invalid data mode: {mode}. Must be one of: {', '.join(MODES)}")
        if mode not in self.adapters:
            raise ValueError(f"No adapter configured for {mode} mode")

    def set_mode(self, mode: str) -> None:
        """Switch which adapter serves page requests.

        Only the read path changes; a running sync is not affected. An
        in-flight page request for the old mode becomes stale.

        Args:
            mode: "remote" or "local"
        """
        self._check_mode(mode)
        with self._state_lock:
            if mode != self._mode:
                self._companies.clear()
            self._mode = mode
            if self._current is not None:
                self._current = (self._current[0], mode)
        logger.debug("Data mode set to %s", mode)

    def plan(self, raw_params: Optional[Mapping[str, Any]] = None) -> QueryDescriptor:
        """Plan raw parameters with this session's defaults."""
        return plan(
            raw_params,
            default_page_size=self.default_page_size,
            default_sort_column=self.default_sort_column,
        )

    # === Page requests ===

    def _fetch(self, descriptor: QueryDescriptor, mode: str) -> PageView:
        """Serve a descriptor from the page cache or the adapter.

        Pages past the end are clamped to the last page; the result is cached
        under the descriptor as requested.
        """
        cached = self.page_cache.get(descriptor, mode)
        if cached is not None:
            pages = page_count(cached.total, descriptor.page_size)
            return PageView(
                descriptor=descriptor.with_page(min(descriptor.page, max(1, pages))),
                mode=mode,
                rows=list(cached.rows),
                total=cached.total,
                total_pages=pages,
                from_cache=True,
            )

        adapter = self.adapters[mode]
        total = adapter.count(descriptor.filter_map())
        pages = page_count(total, descriptor.page_size)
        served = descriptor.with_page(min(descriptor.page, max(1, pages)))
        if served.page != descriptor.page:
            logger.debug("Clamped page %d to %d (%d rows)", descriptor.page, served.page, total)

        rows = adapter.fetch_page(served)
        self.page_cache.put(descriptor, mode, rows, total)
        return PageView(
            descriptor=served,
            mode=mode,
            rows=rows,
            total=total,
            total_pages=pages,
        )

    def _apply(self, token: RequestToken, view: PageView) -> PageView:
        """Show a response if it still answers the current request."""
        with self._state_lock:
            if self._current != token:
                logger.debug("Discarding stale response for page %d", token[0].page)
                return view.model_copy(update={"stale": True})
            self._view = view
            for row in view.rows:
                company = value_of(row, "Company_Name")
                if company:
                    self._companies.add(str(company))
            if len(self._companies) > COMPANY_OPTIONS_LIMIT:
                self._companies = set(_sorted_names(self._companies)[:COMPANY_OPTIONS_LIMIT])
        return view

    def _fetch_and_apply(self, descriptor: QueryDescriptor, mode: str) -> PageView:
        token = (descriptor, mode)
        try:
            view = self._fetch(descriptor, mode)
        except SourceUnavailable as e:
            logger.warning("Page request failed in %s mode: %s", mode, e)
            failed = PageView(
                descriptor=descriptor,
                mode=mode,
                error=create_user_friendly_error(e),
            )
            applied = self._apply(token, failed)
            if isinstance(e, Unauthorized) and not applied.stale:
                raise
            return applied
        return self._apply(token, view)

    def _issue(self, raw_params: Optional[Mapping[str, Any]]) -> Tuple[QueryDescriptor, str]:
        descriptor = self.plan(raw_params)
        with self._state_lock:
            mode = self._mode
            self._current = (descriptor, mode)
        return descriptor, mode

    def load_page(self, raw_params: Optional[Mapping[str, Any]] = None) -> PageView:
        """Fetch a page on the calling thread and show it.

        Args:
            raw_params: Loosely typed filter/sort/page parameters

        Returns:
            The resulting view; on a source failure it carries ``error`` and
            no rows

        Raises:
            Unauthorized: If the remote rejects the credentials
        """
        descriptor, mode = self._issue(raw_params)
        return self._fetch_and_apply(descriptor, mode)

    def request_page(self, raw_params: Optional[Mapping[str, Any]] = None) -> "Future[PageView]":
        """Fetch a page on a worker thread.

        The newest request always wins: a still-queued older request is
        cancelled, and a response that completes after a newer request was
        issued is returned with ``stale=True`` without touching the view or
        being cached under the newer descriptor.

        Args:
            raw_params: Loosely typed filter/sort/page parameters

        Returns:
            Future resolving to the PageView for this request
        """
        descriptor, mode = self._issue(raw_params)
        future = self._executor.submit(self._fetch_and_apply, descriptor, mode)
        with self._state_lock:
            previous, self._pending = self._pending, future
        if previous is not None and not previous.done():
            previous.cancel()
        return future

    def company_options(self, limit: int = COMPANY_OPTIONS_LIMIT) -> List[str]:
        """Sorted distinct company names seen in pages shown in the current mode.

        Only the first COMPANY_OPTIONS_LIMIT names in sort order are kept.

        Args:
            limit: Maximum number of names returned

        Returns:
            Company names for a picker
        """
        with self._state_lock:
            names = _sorted_names(self._companies)
        return names[:limit]

    # === Bulk jobs ===

    def sync(
        self,
        raw_params: Optional[Mapping[str, Any]] = None,
        progress_callback: Optional[Callable[[Progress], None]] = None,
    ) -> SyncResult:
        """Rebuild the local mirror from the remote rows matching a filter set.

        Args:
            raw_params: Filter/sort parameters (page fields are ignored)
            progress_callback: Called with every progress snapshot

        Returns:
            SyncResult

        Raises:
            JobBusy: If a sync or export is already running
            SyncFailed: If the run aborts part way
        """
        if self.sync_engine is None:
            raise ValueError("Sync needs both a remote and a local adapter")
        descriptor = self.plan(require_filters(raw_params))
        with self.job_guard.start("sync") as cancel_event:
            return self.sync_engine.run(descriptor, progress_callback, cancel_event)

    def export(
        self,
        raw_params: Optional[Mapping[str, Any]] = None,
        mode: Optional[str] = None,
        progress_callback: Optional[Callable[[Progress], None]] = None,
    ) -> ExportResult:
        """Collect every row matching a filter set for export.

        Args:
            raw_params: Filter/sort parameters (page fields are ignored)
            mode: Adapter to drain (default: the session's current mode)
            progress_callback: Called with every progress snapshot

        Returns:
            ExportResult, ready for ``export_engine.write``

        Raises:
            JobBusy: If a sync or export is already running
            ExportFailed: If the run aborts part way
        """
        mode = mode or self.mode
        self._check_mode(mode)
        descriptor = self.plan(require_filters(raw_params))
        with self.job_guard.start("export") as cancel_event:
            return self.export_engine.collect(
                self.adapters[mode], descriptor, progress_callback, cancel_event
            )

    def cancel_job(self) -> bool:
        """Ask the running sync/export to stop after its current chunk."""
        return self.job_guard.cancel()

    def close(self) -> None:
        """Stop page workers and close every adapter."""
        self._executor.shutdown(wait=True, cancel_futures=True)
        for adapter in self.adapters.values():
            adapter.close()

    def __enter__(self) -> "QuerySession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
