"""Shared fixtures and fakes for Folio Browser tests."""

import threading
from typing import Any, Callable, Dict, List, Mapping, Optional

import pytest
import requests

from folio_browser.cache.store import LocalCacheStore
from folio_browser.models.query import QueryDescriptor
from folio_browser.models.row import Row, normalize_row
from folio_browser.sources.base import RowStoreAdapter
from folio_browser.utils.error_handling import SourceUnavailable
from folio_browser.utils.log_setup import reset_logging
from folio_browser.utils.row_filter import filter_rows, sort_rows


def make_rows(count: int, company: str = "Acme", start: int = 0, **extra: Any) -> List[Row]:
    """Build distinct holdings rows, each with its own Folio_Dpid."""
    rows = []
    for i in range(start, start + count):
        row = {
            "Investor_First_Name": f"Inv{i:05d}",
            "Investor_Last_Name": "Doe",
            "Address": f"{i} Main Street",
            "Folio_Dpid": f"IN{i:08d}",
            "Company_Name": company,
            "No_of_Shares": i * 10,
            "Valuation": i * 2.5,
            "Case": "open",
        }
        row.update(extra)
        rows.append(row)
    return rows


class InMemoryAdapter(RowStoreAdapter):
    """Adapter over a list of rows, applying the shared filter/sort rules.

    Stands in for the remote server. Can fail on demand and can block inside
    ``fetch_page`` until ``gate`` is set, for concurrency tests.
    """

    def __init__(
        self,
        rows: List[Mapping[str, Any]],
        name: str = "remote",
        count_override: Optional[int] = None,
    ):
        self.rows = [normalize_row(r) for r in rows]
        self._name = name
        self.count_override = count_override
        self.count_calls = 0
        self.fetch_calls: List[QueryDescriptor] = []
        self.error: Optional[Exception] = None
        self.fail_on_fetch: Optional[int] = None
        self.fail_error: Exception = SourceUnavailable("connection reset by peer")
        self.gate: Optional[threading.Event] = None
        self.block_when: Callable[[QueryDescriptor], bool] = lambda descriptor: True
        self.entered = threading.Event()
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    def count(self, filters: Optional[Mapping[str, str]] = None) -> int:
        self.count_calls += 1
        if self.error is not None:
            raise self.error
        if self.count_override is not None:
            return self.count_override
        return len(filter_rows(self.rows, filters or {}))

    def fetch_page(self, descriptor: QueryDescriptor) -> List[Row]:
        self.fetch_calls.append(descriptor)
        if self.error is not None:
            raise self.error
        if self.fail_on_fetch is not None and len(self.fetch_calls) == self.fail_on_fetch:
            raise self.fail_error
        if self.gate is not None and self.block_when(descriptor):
            self.entered.set()
            self.gate.wait(timeout=5)

        matching = filter_rows(self.rows, descriptor.filter_map())
        ordered = sort_rows(matching, descriptor.sort_column, descriptor.sort_direction)
        start = descriptor.offset
        return [dict(r) for r in ordered[start:start + descriptor.page_size]]

    def close(self) -> None:
        self.closed = True


class RecordingStore:
    """Minimal stand-in for LocalCacheStore that only counts writes."""

    def __init__(self):
        self.cleared = 0
        self.batches: List[int] = []
        self.meta: Dict[str, Any] = {}

    def clear(self) -> None:
        self.cleared += 1
        self.batches = []

    def upsert(self, rows) -> int:
        rows = list(rows)
        self.batches.append(len(rows))
        return len(rows)

    def set_meta(self, key: str, value: Any) -> None:
        self.meta[key] = value

    @property
    def stored(self) -> int:
        return sum(self.batches)


class FakeResponse:
    """Just enough of requests.Response for the remote adapter."""

    def __init__(self, status_code: int = 200, payload: Any = None, bad_json: bool = False):
        self.status_code = status_code
        self._payload = payload
        self._bad_json = bad_json

    def json(self) -> Any:
        if self._bad_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeHttp:
    """Records GET calls and replays queued responses (or raises them)."""

    def __init__(self, *responses: Any):
        self.headers: Dict[str, str] = {}
        self.calls: List[Dict[str, Any]] = []
        self.responses = list(responses)
        self.closed = False

    def get(self, url: str, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_logging()


@pytest.fixture
def store(tmp_path):
    """A fresh on-disk mirror in a temporary directory."""
    cache_store = LocalCacheStore(db_path=str(tmp_path / "mirror.duckdb"))
    yield cache_store
    cache_store.close()


@pytest.fixture
def acme_rows():
    return make_rows(25, company="Acme")
