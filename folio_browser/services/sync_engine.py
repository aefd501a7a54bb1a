"""Bulk replication of remote rows into the local mirror.

A sync always starts from an empty mirror and pulls the filtered remote
dataset in large chunks until a short chunk marks the end of the data.
Re-running a sync from scratch converges regardless of what a previous,
aborted run left behind.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Generator, Optional

from pydantic import BaseModel, Field

from ..cache.store import LocalCacheStore
from ..models.progress import Progress, estimate_eta
from ..models.query import QueryDescriptor
from ..sources.base import RowStoreAdapter
from ..utils.error_handling import SourceUnavailable, SyncFailed, Unauthorized

logger = logging.getLogger(__name__)

DEFAULT_SYNC_CHUNK_SIZE = 10000


class SyncResult(BaseModel):
    """Outcome of a sync run."""

    fetched: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    chunks: int = Field(default=0, ge=0, description="Number of chunk fetches issued")
    cancelled: bool = Field(default=False)
    elapsed_seconds: float = Field(default=0.0, ge=0)


class SyncEngine:
    """Replicates filtered remote rows into a local cache store."""

    def __init__(
        self,
        remote: RowStoreAdapter,
        store: LocalCacheStore,
        chunk_size: int = DEFAULT_SYNC_CHUNK_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the sync engine.

        Args:
            remote: Adapter to read from (normally the remote adapter)
            store: Local mirror to rebuild
            chunk_size: Rows requested per chunk
            clock: Monotonic time source in seconds
        """
        self.remote = remote
        self.store = store
        self.chunk_size = chunk_size
        self._clock = clock

    def iter_sync(
        self,
        descriptor: QueryDescriptor,
        cancel_event: Optional[threading.Event] = None,
    ) -> Generator[Progress, None, SyncResult]:
        """Run a sync, yielding progress after every chunk.

        The generator's return value (``StopIteration.value``) is the
        :class:`SyncResult`.

        Args:
            descriptor: Filters and sort to replicate (page fields are ignored)
            cancel_event: Checked between chunks; when set the run stops early

        Yields:
            Progress snapshots, starting with fetched=0

        Raises:
            SyncFailed: If a count, fetch or write fails part way
            Unauthorized: If the remote rejects the credentials
        """
        started = self._clock()
        filters = descriptor.filter_map()
        chunk = descriptor.with_page_size(self.chunk_size).with_page(1)
        progress = Progress(fetched=0, total=0)
        fetched = 0
        chunks = 0
        cancelled = False

        try:
            self.store.clear()

            total = self.remote.count(filters)
            progress = Progress(fetched=0, total=total)
            logger.info("Sync started: %d rows match %s", total, filters or "no filters")
            yield progress

            while fetched < total:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break

                batch = self.remote.fetch_page(chunk.with_page(chunks + 1))
                chunks += 1
                if not batch:
                    break

                self.store.upsert(batch)
                fetched += len(batch)

                elapsed = self._clock() - started
                progress = Progress(
                    fetched=fetched,
                    total=total,
                    eta_seconds=estimate_eta(fetched, total, elapsed),
                )
                logger.debug("Sync chunk %d: %s", chunks, progress.describe())
                yield progress

                # A short chunk is the end-of-data signal
                if len(batch) < chunk.page_size:
                    break

        except Unauthorized:
            logger.warning("Sync aborted: credentials rejected")
            raise
        except SourceUnavailable as e:
            logger.warning("Sync aborted after %d/%d rows: %s", progress.fetched, progress.total, e)
            raise SyncFailed(f"Sync failed: {e}", progress=progress) from e

        result = SyncResult(
            fetched=fetched,
            total=progress.total,
            chunks=chunks,
            cancelled=cancelled,
            elapsed_seconds=max(0.0, self._clock() - started),
        )
        self._record(descriptor, result)

        if cancelled:
            logger.info("Sync cancelled after %d/%d rows", fetched, result.total)
        else:
            logger.info("Sync complete: %d rows in %d chunks", fetched, chunks)
        return result

    def run(
        self,
        descriptor: QueryDescriptor,
        progress_callback: Optional[Callable[[Progress], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncResult:
        """Run a sync to completion.

        Args:
            descriptor: Filters and sort to replicate
            progress_callback: Called with every progress snapshot
            cancel_event: Cooperative cancellation token

        Returns:
            SyncResult
        """
        steps = self.iter_sync(descriptor, cancel_event)
        while True:
            try:
                progress = next(steps)
            except StopIteration as stop:
                return stop.value
            if progress_callback:
                progress_callback(progress)

    def _record(self, descriptor: QueryDescriptor, result: SyncResult) -> None:
        """Store a summary of the run in the mirror's metadata."""
        try:
            self.store.set_meta(
                "last_sync",
                {
                    "filters": descriptor.filter_map(),
                    "fetched": result.fetched,
                    "total": result.total,
                    "cancelled": result.cancelled,
                    "finished_at": datetime.now().isoformat(timespec="seconds"),
                },
            )
        except SourceUnavailable as e:
            raise SyncFailed(
                f"Sync finished but its summary could not be saved: {e}",
                progress=Progress(fetched=result.fetched, total=result.total, eta_seconds=0.0),
            ) from e
