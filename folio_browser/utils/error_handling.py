"""Error types and user-facing error formatting."""

from typing import Optional, TYPE_CHECKING

import click

if TYPE_CHECKING:
    from ..models.progress import Progress


class FolioBrowserError(Exception):
    """Base class for all Folio Browser errors."""


class ValidationError(FolioBrowserError):
    """Raised when request parameters are structurally unusable."""


class SourceUnavailable(FolioBrowserError):
    """Raised when an adapter cannot reach or read its backing store."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class Unauthorized(SourceUnavailable):
    """Raised when the remote source rejects the bearer credential."""


class JobBusy(FolioBrowserError):
    """Raised when a bulk job is requested while another one is running."""

    def __init__(self, running_job: str):
        super().__init__(f"A {running_job} job is already running")
        self.running_job = running_job


class BulkJobError(FolioBrowserError):
    """Base for bulk sync/export aborts; carries the progress reached."""

    def __init__(self, message: str, progress: Optional["Progress"] = None):
        super().__init__(message)
        self.progress = progress


class SyncFailed(BulkJobError):
    """Raised when a sync run aborts part way."""


class ExportFailed(BulkJobError):
    """Raised when an export run aborts part way."""


def create_user_friendly_error(error: Exception) -> str:
    """Turn an exception into a one-line message for the terminal.

    Args:
        error: Exception to describe

    Returns:
        Message suitable for printing
    """
    if isinstance(error, Unauthorized):
        return "The data server rejected your credentials. Please log in again and update your token."
    if isinstance(error, BulkJobError):
        message = str(error)
        if error.progress is not None:
            message += f" after {error.progress.fetched:,} of {error.progress.total:,} rows"
        return message
    if isinstance(error, SourceUnavailable):
        return f"Data source unavailable: {error}"
    if isinstance(error, JobBusy):
        return f"{error}. Wait for it to finish or cancel it first."
    if isinstance(error, FileNotFoundError):
        return f"File not found: {error.filename}"
    if isinstance(error, PermissionError):
        return f"Permission denied: {error.filename}"
    if isinstance(error, ValueError):
        return str(error)
    return f"{type(error).__name__}: {error}"


class ErrorHandler:
    """Prints errors for CLI commands, with details in verbose mode."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def report(self, error: Exception, context: str) -> None:
        """Print an error message to stderr.

        Args:
            error: Exception raised by the command
            context: What was being attempted (e.g. "syncing")
        """
        click.echo(f"Error {context}: {create_user_friendly_error(error)}", err=True)
        if self.verbose:
            click.echo(f"Details: {error!r}", err=True)
            if error.__cause__ is not None:
                click.echo(f"Caused by: {error.__cause__!r}", err=True)

    def exit_code(self, error: Exception) -> int:
        """Exit status for an error (2 asks the user to re-authenticate)."""
        return 2 if isinstance(error, Unauthorized) else 1
