"""Full-dataset export to xlsx or csv.

An export drains every row matching a descriptor's filters from one adapter,
chunk by chunk, and renders a single table whose header row is the known
schema followed by any extra columns observed in the data.
"""

import csv
import io
import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from pydantic import BaseModel, Field

from ..models.progress import Progress, estimate_eta
from ..models.query import QueryDescriptor
from ..models.row import KNOWN_COLUMNS, Row
from ..sources.base import RowStoreAdapter
from ..utils.error_handling import ExportFailed, SourceUnavailable, Unauthorized
from ..utils.row_filter import cell_text

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_CHUNK_SIZE = 2000
EXPORT_FORMATS = ("xlsx", "csv")
SHEET_NAME = "Data"


class ExportResult(BaseModel):
    """Rows collected for an export, ready to render."""

    mode: str = Field(description="Adapter the rows came from")
    headers: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = Field(default=0, ge=0, description="Count reported before draining")
    cancelled: bool = Field(default=False)
    elapsed_seconds: float = Field(default=0.0, ge=0)


def build_filename(prefix: str, mode: str, fmt: str, now: Optional[datetime] = None) -> str:
    """Build a timestamped, mode-tagged export filename.

    Args:
        prefix: Filename prefix
        mode: "remote" or "local"
        fmt: "xlsx" or "csv"
        now: Timestamp to embed (default: current local time)

    Returns:
        e.g. ``holdings_local_20240131-154500.xlsx``
    """
    now = now or datetime.now()
    return f"{prefix}_{mode}_{now:%Y%m%d-%H%M%S}.{fmt}"


def _xlsx_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool) or isinstance(value, (int, float)):
        return value
    return ILLEGAL_CHARACTERS_RE.sub("", cell_text(value))


class ExportEngine:
    """Drains an adapter and renders the rows as a tabular artifact."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_EXPORT_CHUNK_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.chunk_size = chunk_size
        self._clock = clock

    def collect(
        self,
        adapter: RowStoreAdapter,
        descriptor: QueryDescriptor,
        progress_callback: Optional[Callable[[Progress], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExportResult:
        """Fetch every row matching the descriptor's filters.

        The count is taken first and only drives progress reporting; the
        loop itself ends on the first short or empty chunk.

        Args:
            adapter: Adapter to drain (remote or local)
            descriptor: Filters and sort to export (page fields are ignored)
            progress_callback: Called after the count and after every chunk
            cancel_event: Checked between chunks; when set collection stops
                and the partial result is returned with ``cancelled=True``

        Returns:
            ExportResult with ordered headers and fully populated rows

        Raises:
            ExportFailed: If a count or fetch fails part way
            Unauthorized: If the remote rejects the credentials
        """
        started = self._clock()
        chunk = descriptor.with_page_size(self.chunk_size).with_page(1)
        progress = Progress(fetched=0, total=0)
        collected: List[Row] = []
        seen: Dict[str, None] = dict.fromkeys(KNOWN_COLUMNS)
        cancelled = False
        page = 1

        def report(value: Progress) -> None:
            if progress_callback:
                progress_callback(value)

        try:
            total = adapter.count(descriptor.filter_map())
            progress = Progress(fetched=0, total=total)
            logger.info("Export started from %s: %d rows expected", adapter.name, total)
            report(progress)

            while True:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break

                batch = adapter.fetch_page(chunk.with_page(page))
                if not batch:
                    break

                collected.extend(batch)
                for row in batch:
                    for key in row:
                        seen.setdefault(key)

                fetched = len(collected)
                progress = Progress(
                    fetched=fetched,
                    total=max(total, fetched),
                    eta_seconds=estimate_eta(fetched, total, self._clock() - started),
                )
                logger.debug("Export chunk %d: %s", page, progress.describe())
                report(progress)

                if len(batch) < chunk.page_size:
                    break
                page += 1

        except Unauthorized:
            logger.warning("Export aborted: credentials rejected")
            raise
        except SourceUnavailable as e:
            logger.warning("Export aborted after %d/%d rows: %s", progress.fetched, progress.total, e)
            raise ExportFailed(f"Export failed: {e}", progress=progress) from e

        headers = list(seen)
        rows = [
            {header: ("" if row.get(header) is None else row[header]) for header in headers}
            for row in collected
        ]

        if cancelled:
            logger.info("Export cancelled after %d rows", len(rows))
        else:
            logger.info("Export collected %d rows with %d columns", len(rows), len(headers))

        return ExportResult(
            mode=adapter.name,
            headers=headers,
            rows=rows,
            total=progress.total,
            cancelled=cancelled,
            elapsed_seconds=max(0.0, self._clock() - started),
        )

    def render(self, result: ExportResult, fmt: str = "xlsx") -> bytes:
        """Render collected rows as file content.

        Args:
            result: Output of :meth:`collect`
            fmt: "xlsx" or "csv"

        Returns:
            File bytes

        Raises:
            ValueError: If the format is not supported
        """
        if fmt == "xlsx":
            return self._render_xlsx(result)
        if fmt == "csv":
            return self._render_csv(result)
        raise ValueError(f"Unsupported export format: {fmt}. Must be one of: {', '.join(EXPORT_FORMATS)}")

    def _render_xlsx(self, result: ExportResult) -> bytes:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = SHEET_NAME
        sheet.append(result.headers)
        for row in result.rows:
            sheet.append([_xlsx_value(row.get(header)) for header in result.headers])

        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    def _render_csv(self, result: ExportResult) -> bytes:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(result.headers)
        for row in result.rows:
            writer.writerow([cell_text(row.get(header)) for header in result.headers])
        # BOM so spreadsheet apps detect UTF-8
        return buffer.getvalue().encode("utf-8-sig")

    def write(
        self,
        result: ExportResult,
        directory: str,
        fmt: str = "xlsx",
        prefix: str = "holdings",
        now: Optional[datetime] = None,
    ) -> Path:
        """Render and save an export artifact.

        Args:
            result: Output of :meth:`collect`
            directory: Target directory (created if missing)
            fmt: "xlsx" or "csv"
            prefix: Filename prefix
            now: Timestamp for the filename

        Returns:
            Path of the written file
        """
        content = self.render(result, fmt)
        target_dir = Path(directory).expanduser()
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / build_filename(prefix, result.mode, fmt, now)
        path.write_bytes(content)
        logger.info("Wrote %d rows to %s", len(result.rows), path)
        return path
