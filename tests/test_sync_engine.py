"""Tests for the sync engine."""

import threading

import pytest

from conftest import InMemoryAdapter, RecordingStore, make_rows

from folio_browser.models.query import plan
from folio_browser.services.sync_engine import SyncEngine
from folio_browser.utils.error_handling import SyncFailed, Unauthorized


class FakeClock:
    """Advances one second every time it is read."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


class TestChunking:
    """Tests for the chunked replication loop."""

    def test_three_chunks_for_23000_rows(self):
        remote = InMemoryAdapter(make_rows(23000))
        store = RecordingStore()
        snapshots = []

        result = SyncEngine(remote, store, chunk_size=10000).run(
            plan({}), progress_callback=snapshots.append
        )

        assert len(remote.fetch_calls) == 3
        assert [d.page for d in remote.fetch_calls] == [1, 2, 3]
        assert all(d.page_size == 10000 for d in remote.fetch_calls)
        assert store.batches == [10000, 10000, 3000]
        assert result.fetched == result.total == 23000
        assert result.chunks == 3
        assert snapshots[-1].fetched == snapshots[-1].total == 23000

    def test_first_progress_is_zero(self):
        remote = InMemoryAdapter(make_rows(5))
        steps = SyncEngine(remote, RecordingStore(), chunk_size=10).iter_sync(plan({}))
        first = next(steps)
        assert first.fetched == 0
        assert first.total == 5

    def test_filters_and_sort_passed_through(self):
        remote = InMemoryAdapter(make_rows(30, company="Acme") + make_rows(20, company="Globex", start=100))
        store = RecordingStore()
        descriptor = plan({"Company_Name": "glob", "sortBy": "Valuation", "page": 7})

        result = SyncEngine(remote, store, chunk_size=100).run(descriptor)

        assert result.fetched == 20
        assert remote.fetch_calls[0].filter_map() == {"Company_Name": "glob"}
        assert remote.fetch_calls[0].sort_column == "Valuation"
        assert remote.fetch_calls[0].page == 1

    def test_empty_source(self):
        remote = InMemoryAdapter([])
        store = RecordingStore()
        result = SyncEngine(remote, store).run(plan({}))

        assert result.fetched == 0
        assert result.total == 0
        assert remote.fetch_calls == []
        assert store.cleared == 1

    def test_short_chunk_ends_loop_despite_count(self):
        remote = InMemoryAdapter(make_rows(30), count_override=50)
        result = SyncEngine(remote, RecordingStore(), chunk_size=20).run(plan({}))

        assert len(remote.fetch_calls) == 2
        assert result.fetched == 30
        assert result.total == 50

    def test_eta_from_clock(self):
        remote = InMemoryAdapter(make_rows(40))
        snapshots = []
        SyncEngine(remote, RecordingStore(), chunk_size=10, clock=FakeClock()).run(
            plan({}), progress_callback=snapshots.append
        )

        assert snapshots[0].eta_seconds is None
        assert snapshots[1].fetched == 10
        assert snapshots[1].eta_seconds == pytest.approx(3.0)
        assert snapshots[-1].eta_seconds == 0.0


class TestMirror:
    """Tests against a real local store."""

    def test_store_rebuilt_from_scratch(self, store):
        store.upsert(make_rows(5, company="Stale", start=900))
        remote = InMemoryAdapter(make_rows(12))

        SyncEngine(remote, store, chunk_size=5).run(plan({}))

        assert store.total_rows() == 12
        assert store.count({"Company_Name": "Stale"}) == 0

    def test_rerun_converges(self, store):
        remote = InMemoryAdapter(make_rows(12))
        engine = SyncEngine(remote, store, chunk_size=5)
        engine.run(plan({}))
        first = sorted(store.all_rows(), key=lambda r: r["Folio_Dpid"])

        engine.run(plan({}))
        assert sorted(store.all_rows(), key=lambda r: r["Folio_Dpid"]) == first

    def test_last_sync_recorded(self, store):
        remote = InMemoryAdapter(make_rows(3))
        SyncEngine(remote, store).run(plan({"Case": "open"}))

        last_sync = store.get_meta("last_sync")
        assert last_sync["fetched"] == 3
        assert last_sync["filters"] == {"Case": "open"}
        assert last_sync["cancelled"] is False


class TestFailures:
    """Tests for aborts and cancellation."""

    def test_fetch_failure_keeps_partial_rows(self, store):
        remote = InMemoryAdapter(make_rows(25))
        remote.fail_on_fetch = 2

        with pytest.raises(SyncFailed) as exc_info:
            SyncEngine(remote, store, chunk_size=10).run(plan({}))

        assert exc_info.value.progress.fetched == 10
        assert exc_info.value.progress.total == 25
        assert store.total_rows() == 10

    def test_unauthorized_not_wrapped(self):
        remote = InMemoryAdapter(make_rows(5))
        remote.error = Unauthorized("expired", status_code=401)

        with pytest.raises(Unauthorized):
            SyncEngine(remote, RecordingStore()).run(plan({}))

    def test_cancel_between_chunks(self):
        remote = InMemoryAdapter(make_rows(50))
        store = RecordingStore()
        cancel = threading.Event()

        def on_progress(progress):
            if progress.fetched >= 10:
                cancel.set()

        result = SyncEngine(remote, store, chunk_size=10).run(
            plan({}), progress_callback=on_progress, cancel_event=cancel
        )

        assert result.cancelled
        assert result.fetched == 10
        assert len(remote.fetch_calls) == 1
        assert store.meta["last_sync"]["cancelled"] is True
