"""Tests for the bulk job guard, progress estimates and error messages."""

import logging

import pytest

from folio_browser.models.progress import Progress, estimate_eta
from folio_browser.services.jobs import BulkJobGuard
from folio_browser.utils.error_handling import (
    ErrorHandler,
    JobBusy,
    SourceUnavailable,
    SyncFailed,
    Unauthorized,
    create_user_friendly_error,
)
from folio_browser.utils.log_setup import PACKAGE_LOGGER, setup_logging


class TestBulkJobGuard:
    """Tests for single-flight bulk jobs."""

    def test_busy_while_held(self):
        guard = BulkJobGuard()
        assert not guard.busy

        with guard.start("sync"):
            assert guard.busy
            assert guard.job_name == "sync"
            with pytest.raises(JobBusy) as exc_info:
                with guard.start("export"):
                    pass
            assert exc_info.value.running_job == "sync"

        assert not guard.busy
        assert guard.job_name is None

    def test_released_on_error(self):
        guard = BulkJobGuard()
        with pytest.raises(RuntimeError):
            with guard.start("sync"):
                raise RuntimeError("boom")
        assert not guard.busy

    def test_fresh_cancel_event_per_job(self):
        guard = BulkJobGuard()
        with guard.start("sync") as first:
            assert guard.cancel()
            assert first.is_set()

        with guard.start("export") as second:
            assert not second.is_set()

    def test_cancel_when_idle(self):
        assert not BulkJobGuard().cancel()


class TestProgress:
    """Tests for progress snapshots and ETA."""

    def test_eta(self):
        assert estimate_eta(0, 100, 5.0) is None
        assert estimate_eta(25, 100, 5.0) == pytest.approx(15.0)
        assert estimate_eta(100, 100, 5.0) == 0.0
        assert estimate_eta(10, 100, 0.0) is None

    def test_percent(self):
        assert Progress(fetched=50, total=200).percent == 25
        assert Progress(fetched=0, total=0).percent == 0
        assert Progress(fetched=300, total=200).percent == 100

    def test_describe(self):
        assert Progress(fetched=1000, total=4000, eta_seconds=2.2).describe() == "1,000/4,000 (~3 sec left)"
        assert Progress(fetched=4000, total=4000, eta_seconds=0.0).describe() == "4,000/4,000"


class TestErrorMessages:
    """Tests for user-facing error text."""

    def test_unauthorized(self):
        message = create_user_friendly_error(Unauthorized("401", status_code=401))
        assert "log in again" in message

    def test_bulk_failure_includes_progress(self):
        error = SyncFailed("Sync failed: reset", progress=Progress(fetched=10000, total=23000))
        assert create_user_friendly_error(error) == "Sync failed: reset after 10,000 of 23,000 rows"

    def test_source_unavailable(self):
        assert create_user_friendly_error(SourceUnavailable("down")) == "Data source unavailable: down"

    def test_exit_codes(self):
        handler = ErrorHandler()
        assert handler.exit_code(Unauthorized("x")) == 2
        assert handler.exit_code(SourceUnavailable("x")) == 1
        assert handler.exit_code(ValueError("x")) == 1


class TestLogging:
    def test_setup_is_idempotent(self):
        logger = setup_logging(verbose=False)
        again = setup_logging(verbose=True)

        assert logger is again
        assert logger.name == PACKAGE_LOGGER
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG
        assert not logger.propagate
