"""Single-flight guard for long-running bulk jobs.

Sync and export both drain whole datasets and sync rebuilds the local
mirror from scratch, so at most one of them may run per session. A second
request while one is running is rejected, never queued or interleaved.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from ..utils.error_handling import JobBusy

logger = logging.getLogger(__name__)


class BulkJobGuard:
    """Busy flag plus cooperative cancellation token for bulk jobs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._job_name: Optional[str] = None
        self._cancel_event = threading.Event()

    @property
    def busy(self) -> bool:
        """Whether a job currently holds the guard."""
        return self._lock.locked()

    @property
    def job_name(self) -> Optional[str]:
        """Name of the running job, if any."""
        return self._job_name

    @property
    def cancel_event(self) -> threading.Event:
        """Cancellation token of the current (or last) job."""
        return self._cancel_event

    @contextmanager
    def start(self, name: str) -> Iterator[threading.Event]:
        """Hold the guard for the duration of a job.

        Args:
            name: Job name used in messages ("sync", "export")

        Yields:
            A fresh cancellation event for this job

        Raises:
            JobBusy: If another job already holds the guard
        """
        if not self._lock.acquire(blocking=False):
            raise JobBusy(self._job_name or "bulk")

        self._job_name = name
        self._cancel_event = threading.Event()
        logger.info("Started %s job", name)
        try:
            yield self._cancel_event
        finally:
            logger.info("Finished %s job", name)
            self._job_name = None
            self._lock.release()

    def cancel(self) -> bool:
        """Ask the running job to stop after its current chunk.

        Returns:
            True if a job was running and has been signalled
        """
        if not self.busy:
            return False
        self._cancel_event.set()
        logger.info("Cancellation requested for %s job", self._job_name)
        return True
