"""Progress reporting for bulk sync and export runs."""

from typing import Optional

from pydantic import BaseModel, Field, computed_field


def estimate_eta(fetched: int, total: int, elapsed_seconds: float) -> Optional[float]:
    """Estimate seconds remaining from observed throughput.

    The estimate assumes the rate seen so far (``fetched / elapsed``) holds
    for the rest of the run. It is approximate and only meant for display.

    Args:
        fetched: Rows fetched so far
        total: Expected total rows
        elapsed_seconds: Wall-clock time since the run started

    Returns:
        Estimated seconds left, 0.0 when done, or None while unknown
    """
    if fetched >= total:
        return 0.0
    if fetched <= 0 or elapsed_seconds <= 0:
        return None
    rate = fetched / elapsed_seconds
    return (total - fetched) / rate


class Progress(BaseModel):
    """Snapshot of a running sync or export."""

    fetched: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    eta_seconds: Optional[float] = Field(
        default=None, description="Estimated seconds left (None while unknown)"
    )

    @computed_field
    @property
    def percent(self) -> int:
        """Completion percentage, 0-100."""
        if self.total <= 0:
            return 100 if self.fetched else 0
        return min(100, round(self.fetched * 100 / self.total))

    def describe(self) -> str:
        """Short human-readable status line."""
        text = f"{self.fetched:,}/{self.total:,}"
        if self.eta_seconds is not None and self.fetched < self.total:
            text += f" (~{int(self.eta_seconds + 0.999)} sec left)"
        return text
