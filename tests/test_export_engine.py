"""Tests for the export engine."""

import csv
import io
import threading
from datetime import datetime

import pytest
from openpyxl import load_workbook

from conftest import InMemoryAdapter, make_rows

from folio_browser.models.query import plan
from folio_browser.models.row import KNOWN_COLUMNS
from folio_browser.services.export_engine import ExportEngine, build_filename
from folio_browser.services.sync_engine import SyncEngine
from folio_browser.sources.local import LocalAdapter
from folio_browser.utils.error_handling import ExportFailed, Unauthorized


class TestCollect:
    """Tests for draining an adapter."""

    def test_drains_in_chunks(self):
        adapter = InMemoryAdapter(make_rows(45))
        result = ExportEngine(chunk_size=20).collect(adapter, plan({}))

        assert len(adapter.fetch_calls) == 3
        assert len(result.rows) == 45
        assert result.total == 45
        assert result.mode == "remote"

    def test_count_drives_progress(self):
        adapter = InMemoryAdapter(make_rows(45))
        snapshots = []
        ExportEngine(chunk_size=20).collect(adapter, plan({}), progress_callback=snapshots.append)

        assert adapter.count_calls == 1
        assert [s.fetched for s in snapshots] == [0, 20, 40, 45]
        assert all(s.total == 45 for s in snapshots)

    def test_exact_multiple_needs_empty_chunk(self):
        adapter = InMemoryAdapter(make_rows(40))
        result = ExportEngine(chunk_size=20).collect(adapter, plan({}))

        assert len(adapter.fetch_calls) == 3
        assert len(result.rows) == 40

    def test_headers_known_first_then_extras(self):
        rows = [
            {"Company_Name": "Acme", "zeta": 1},
            {"Company_Name": "Acme", "alpha": 2, "zeta": 3},
        ]
        result = ExportEngine().collect(InMemoryAdapter(rows), plan({}))

        assert result.headers == KNOWN_COLUMNS + ["zeta", "alpha"]
        assert result.rows[0]["alpha"] == ""
        assert result.rows[0]["Address"] == ""
        assert result.rows[1]["alpha"] == 2

    def test_filters_applied(self):
        adapter = InMemoryAdapter(make_rows(10, company="Acme") + make_rows(5, company="Globex", start=50))
        result = ExportEngine().collect(adapter, plan({"Company_Name": "globex"}))
        assert len(result.rows) == 5
        assert {r["Company_Name"] for r in result.rows} == {"Globex"}

    def test_failure_wrapped(self):
        adapter = InMemoryAdapter(make_rows(45))
        adapter.fail_on_fetch = 2

        with pytest.raises(ExportFailed) as exc_info:
            ExportEngine(chunk_size=20).collect(adapter, plan({}))
        assert exc_info.value.progress.fetched == 20

    def test_unauthorized_not_wrapped(self):
        adapter = InMemoryAdapter(make_rows(5))
        adapter.error = Unauthorized("expired", status_code=403)
        with pytest.raises(Unauthorized):
            ExportEngine().collect(adapter, plan({}))

    def test_cancel_returns_partial(self):
        adapter = InMemoryAdapter(make_rows(45))
        cancel = threading.Event()

        def on_progress(progress):
            if progress.fetched:
                cancel.set()

        result = ExportEngine(chunk_size=20).collect(
            adapter, plan({}), progress_callback=on_progress, cancel_event=cancel
        )
        assert result.cancelled
        assert len(result.rows) == 20


class TestConvergence:
    """Sync then local export matches a remote export."""

    def test_local_export_matches_remote(self, store):
        remote = InMemoryAdapter(make_rows(30, company="Acme") + make_rows(17, company="Globex", start=100))
        descriptor = plan({"Company_Name": "acme", "sortBy": "Valuation", "sortDir": "desc"})

        SyncEngine(remote, store, chunk_size=7).run(descriptor)
        engine = ExportEngine(chunk_size=9)
        from_remote = engine.collect(remote, descriptor)
        from_local = engine.collect(LocalAdapter(store), descriptor)

        def key(row):
            return row["Folio_Dpid"]

        assert from_local.headers == from_remote.headers
        assert sorted(from_local.rows, key=key) == sorted(from_remote.rows, key=key)
        assert len(from_local.rows) == 30


class TestRender:
    """Tests for artifact rendering."""

    def _result(self):
        rows = [{"Company_Name": "Acme", "Valuation": 12.5, "No_of_Shares": 10, "note": "x"}]
        return ExportEngine().collect(InMemoryAdapter(rows, name="local"), plan({}))

    def test_xlsx(self):
        content = ExportEngine().render(self._result(), "xlsx")
        workbook = load_workbook(io.BytesIO(content))

        assert workbook.sheetnames == ["Data"]
        values = list(workbook["Data"].iter_rows(values_only=True))
        assert list(values[0]) == KNOWN_COLUMNS + ["note"]
        data = dict(zip(values[0], values[1]))
        assert data["Company_Name"] == "Acme"
        assert data["Valuation"] == 12.5
        assert data["No_of_Shares"] == 10

    def test_csv(self):
        content = ExportEngine().render(self._result(), "csv")
        lines = list(csv.reader(io.StringIO(content.decode("utf-8-sig"))))

        assert lines[0] == KNOWN_COLUMNS + ["note"]
        data = dict(zip(lines[0], lines[1]))
        assert data["Valuation"] == "12.5"
        assert data["Address"] == ""

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            ExportEngine().render(self._result(), "pdf")

    def test_build_filename(self):
        now = datetime(2024, 1, 31, 15, 45, 0)
        assert build_filename("holdings", "local", "xlsx", now) == "holdings_local_20240131-154500.xlsx"

    def test_write(self, tmp_path):
        now = datetime(2024, 1, 31, 15, 45, 0)
        path = ExportEngine().write(self._result(), str(tmp_path / "out"), "csv", "comp", now=now)

        assert path.name == "comp_local_20240131-154500.csv"
        assert path.read_bytes().startswith(b"\xef\xbb\xbf")
