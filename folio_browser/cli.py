"""Command line interface for Folio Browser."""

import json
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .cache.store import LocalCacheStore
from .config import Config, ConfigManager
from .models.progress import Progress as JobProgress
from .models.row import DISPLAY_COLUMNS, KNOWN_COLUMNS
from .services.export_engine import EXPORT_FORMATS
from .services.session import QuerySession
from .sources.base import MODES
from .utils.error_handling import ErrorHandler, FolioBrowserError
from .utils.log_setup import setup_logging
from .utils.row_filter import cell_text

HANDLED_ERRORS = (FolioBrowserError, ValueError, OSError)


def get_spinner_name() -> str:
    """Get spinner name compatible with current platform.

    Returns ASCII-only spinner on Windows to avoid encoding issues.
    """
    if sys.platform == "win32":
        return "line"
    return "dots"


def parse_filters(values: Tuple[str, ...]) -> Dict[str, str]:
    """Parse repeated ``COLUMN=PATTERN`` options.

    Args:
        values: Raw option values

    Returns:
        Column -> pattern dict (column names are resolved by the planner)

    Raises:
        click.BadParameter: If a value has no ``=``
    """
    filters: Dict[str, str] = {}
    for value in values:
        column, sep, pattern = value.partition("=")
        if not sep or not column.strip():
            raise click.BadParameter(
                f"Expected COLUMN=PATTERN, got {value!r}", param_hint="--filter"
            )
        filters[column.strip()] = pattern
    return filters


def query_params(
    filters: Tuple[str, ...],
    sort: Optional[str] = None,
    desc: bool = False,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> Dict[str, Any]:
    """Build planner parameters from command options."""
    params: Dict[str, Any] = {"filters": parse_filters(filters)}
    if sort:
        params["sortBy"] = sort
    if desc:
        params["sortDir"] = "desc"
    if page is not None:
        params["page"] = page
    if page_size is not None:
        params["pageSize"] = page_size
    return params


def json_serializer(obj):
    """JSON serializer for values DuckDB or the server may hand back."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    elif hasattr(obj, "isoformat"):
        return obj.isoformat()
    else:
        return str(obj)


def get_session(ctx: click.Context) -> QuerySession:
    """Get the command's query session, creating it on first use."""
    obj = ctx.find_root().obj
    if "session" not in obj:
        factory: Callable[[Config, str], QuerySession] = obj.get(
            "session_factory", QuerySession.from_config
        )
        session = factory(obj["config"], obj["mode"])
        obj["session"] = session
        ctx.find_root().call_on_close(session.close)
    return obj["session"]


def fail(ctx: click.Context, error: Exception, context: str) -> None:
    """Report an error and exit with its status code."""
    handler: ErrorHandler = ctx.obj["error_handler"]
    handler.report(error, context)
    ctx.exit(handler.exit_code(error))


def run_cancellable(session: QuerySession, job: Callable[..., Any], *args: Any) -> Any:
    """Run a bulk job on a worker thread; Ctrl-C cancels it cooperatively."""
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="folio-job") as executor:
        future = executor.submit(job, *args)
        try:
            return future.result()
        except KeyboardInterrupt:
            session.cancel_job()
            return future.result()


def job_progress(console: Console) -> Progress:
    return Progress(
        SpinnerColumn(spinner_name=get_spinner_name()),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.fields[status]}"),
        console=console,
    )


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--mode",
    "-m",
    type=click.Choice(list(MODES)),
    default="remote",
    show_default=True,
    help="Read from the remote server or the local mirror",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool, mode: str):
    """Folio Browser - Browse, mirror and export shareholder holdings.

    Pages through the holdings dataset on the remote data server or in a
    local mirror built by 'sync', with the same filters and sort order in
    both modes.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["mode"] = mode
    ctx.obj.setdefault("console", Console())
    ctx.obj["error_handler"] = ErrorHandler(verbose=verbose)
    setup_logging(verbose)

    try:
        config_manager = ConfigManager(config)
        ctx.obj["config_manager"] = config_manager
        ctx.obj["config"] = config_manager.config
    except ValueError as e:
        click.echo(f"Error initializing Folio Browser: {e}", err=True)
        ctx.exit(1)


filter_option = click.option(
    "--filter",
    "-f",
    "filters",
    multiple=True,
    metavar="COLUMN=PATTERN",
    help="Case-insensitive substring filter (repeatable)",
)


@cli.command()
@filter_option
@click.option("--sort", "-s", help="Column to sort by")
@click.option("--desc", is_flag=True, help="Sort descending")
@click.option("--page", "-p", type=int, default=1, show_default=True, help="Page number")
@click.option("--page-size", "-n", type=int, help="Rows per page")
@click.option("--json", "as_json", is_flag=True, help="Print the page as JSON")
@click.pass_context
def browse(
    ctx: click.Context,
    filters: Tuple[str, ...],
    sort: Optional[str],
    desc: bool,
    page: int,
    page_size: Optional[int],
    as_json: bool,
):
    """Show one page of matching rows."""
    console: Console = ctx.obj["console"]

    try:
        params = query_params(filters, sort, desc, page, page_size)
        session = get_session(ctx)
        view = session.load_page(params)
    except HANDLED_ERRORS as e:
        fail(ctx, e, "browsing")
        return

    if view.error:
        click.echo(f"Error browsing: {view.error}", err=True)
        ctx.exit(1)

    descriptor = view.descriptor
    if as_json:
        payload = {
            "mode": view.mode,
            "page": descriptor.page,
            "page_size": descriptor.page_size,
            "total": view.total,
            "total_pages": view.total_pages,
            "rows": view.rows,
        }
        click.echo(json.dumps(payload, indent=2, default=json_serializer))
        return

    if not view.rows:
        console.print("[yellow]No matching rows.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    for column in DISPLAY_COLUMNS:
        numeric = column in ("No_of_Shares", "Valuation")
        table.add_column(column, justify="right" if numeric else "left", overflow="fold")
    for row in view.rows:
        table.add_row(*[cell_text(row.get(column)) for column in DISPLAY_COLUMNS])

    console.print(table)
    console.print(
        f"[dim]Page {descriptor.page} of {view.total_pages} "
        f"({view.total:,} rows, {view.mode}, sorted by {descriptor.sort_column} "
        f"{descriptor.sort_direction})[/dim]"
    )


@cli.command()
@filter_option
@click.pass_context
def count(ctx: click.Context, filters: Tuple[str, ...]):
    """Count matching rows."""
    try:
        session = get_session(ctx)
        descriptor = session.plan(query_params(filters))
        total = session.adapters[session.mode].count(descriptor.filter_map())
    except HANDLED_ERRORS as e:
        fail(ctx, e, "counting rows")
        return

    click.echo(total)


@cli.command()
@filter_option
@click.pass_context
def sync(ctx: click.Context, filters: Tuple[str, ...]):
    """Rebuild the local mirror from matching remote rows.

    The mirror is cleared first. Press Ctrl-C to stop after the current
    chunk; rows fetched so far stay in the mirror.
    """
    console: Console = ctx.obj["console"]

    try:
        params = query_params(filters)
        session = get_session(ctx)

        with job_progress(console) as progress:
            task = progress.add_task("Syncing", total=None, status="")

            def on_progress(snapshot: JobProgress) -> None:
                progress.update(
                    task,
                    total=snapshot.total or None,
                    completed=snapshot.fetched,
                    status=snapshot.describe(),
                )

            result = run_cancellable(session, session.sync, params, on_progress)
    except HANDLED_ERRORS as e:
        fail(ctx, e, "syncing")
        return

    if result.cancelled:
        console.print(
            f"[yellow]Sync cancelled.[/yellow] {result.fetched:,} of {result.total:,} rows mirrored."
        )
    else:
        console.print(
            f"[green]Sync complete![/green] {result.fetched:,} rows mirrored "
            f"in {result.chunks} chunk(s), {result.elapsed_seconds:.1f}s."
        )


@cli.command()
@filter_option
@click.option("--sort", "-s", help="Column to sort by")
@click.option("--desc", is_flag=True, help="Sort descending")
@click.option(
    "--format",
    "export_format",
    type=click.Choice(list(EXPORT_FORMATS)),
    help="Export format (defaults to configured format)",
)
@click.option("--output-dir", "-o", type=click.Path(file_okay=False), help="Directory to write to")
@click.pass_context
def export(
    ctx: click.Context,
    filters: Tuple[str, ...],
    sort: Optional[str],
    desc: bool,
    export_format: Optional[str],
    output_dir: Optional[str],
):
    """Export every matching row to an xlsx or csv file."""
    console: Console = ctx.obj["console"]
    config: Config = ctx.obj["config"]
    export_format = export_format or config.export.default_format
    output_dir = output_dir or config.export.export_dir

    try:
        params = query_params(filters, sort, desc)
        session = get_session(ctx)

        with job_progress(console) as progress:
            task = progress.add_task("Exporting", total=None, status="")

            def on_progress(snapshot: JobProgress) -> None:
                progress.update(
                    task,
                    total=snapshot.total or None,
                    completed=snapshot.fetched,
                    status=snapshot.describe(),
                )

            result = run_cancellable(session, session.export, params, None, on_progress)

        if result.cancelled:
            console.print("[yellow]Export cancelled.[/yellow] No file written.")
            return

        path = session.export_engine.write(
            result, output_dir, export_format, config.export.file_prefix
        )
    except HANDLED_ERRORS as e:
        fail(ctx, e, "exporting")
        return

    console.print(f"[green]Export completed successfully![/green]")
    console.print(f"File: {path}")
    console.print(f"Rows: {len(result.rows):,}")


@cli.group()
def config():
    """Configuration commands."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context):
    """Show current configuration."""
    config: Config = ctx.obj["config"]
    config_manager: ConfigManager = ctx.obj["config_manager"]
    token = config.remote.resolve_token()

    click.echo(f"Configuration file: {config_manager.config_path}")
    click.echo()
    click.echo("Remote:")
    click.echo(f"  Base URL: {config.remote.base_url}")
    click.echo(f"  Data path: {config.remote.data_path}")
    click.echo(f"  Count path: {config.remote.count_path}")
    click.echo(f"  Timeout: {config.remote.timeout_seconds}s")
    click.echo(f"  Token: {'set' if token else 'not set'} (env {config.remote.token_env})")
    click.echo()
    click.echo("Cache:")
    click.echo(f"  Database: {config.cache.db_path}")
    click.echo(f"  Page cache entries: {config.cache.page_cache_entries or 'unbounded'}")
    click.echo()
    click.echo("Query:")
    click.echo(f"  Default page size: {config.query.default_page_size}")
    click.echo(f"  Default sort column: {config.query.default_sort_column}")
    click.echo()
    click.echo("Sync:")
    click.echo(f"  Chunk size: {config.sync.chunk_size}")
    click.echo()
    click.echo("Export:")
    click.echo(f"  Chunk size: {config.export.chunk_size}")
    click.echo(f"  Default format: {config.export.default_format}")
    click.echo(f"  Export directory: {config.export.export_dir}")
    click.echo(f"  File prefix: {config.export.file_prefix}")


@config.command("columns")
def config_columns():
    """List the known columns, in export order."""
    for column in KNOWN_COLUMNS:
        click.echo(column)


# === Cache management commands ===


@cli.group()
def cache():
    """Local mirror commands.

    Inspect or empty the DuckDB mirror that 'sync' fills and local mode reads.
    """
    pass


@cache.command("status")
@click.pass_context
def cache_status(ctx: click.Context):
    """Show mirror status and statistics."""
    console: Console = ctx.obj["console"]
    config: Config = ctx.obj["config"]

    try:
        with LocalCacheStore(db_path=config.cache.db_path) as store:
            stats = store.get_stats()
    except HANDLED_ERRORS as e:
        fail(ctx, e, "getting cache status")
        return

    console.print("[bold cyan]Mirror Status[/bold cyan]")
    console.print()
    console.print(f"[dim]Database:[/dim] {stats['db_path']}")
    if stats["db_size_bytes"] > 0:
        size_mb = stats["db_size_bytes"] / (1024 * 1024)
        console.print(f"[dim]Size:[/dim] {size_mb:.2f} MB")
    else:
        console.print("[dim]Size:[/dim] Empty (not initialized)")
    console.print()

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Rows", f"{stats['rows']:,}")

    last_sync = stats.get("last_sync")
    if last_sync:
        table.add_row("Last sync", str(last_sync.get("finished_at", "unknown")))
        table.add_row("Last sync rows", f"{last_sync.get('fetched', 0):,} / {last_sync.get('total', 0):,}")
        table.add_row("Last sync cancelled", "yes" if last_sync.get("cancelled") else "no")
        filters = last_sync.get("filters") or {}
        table.add_row(
            "Last sync filters",
            ", ".join(f"{k}={v}" for k, v in filters.items()) or "none",
        )
    else:
        table.add_row("Last sync", "never")

    console.print(table)


@cache.command("clear")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def cache_clear(ctx: click.Context, yes: bool):
    """Delete every row from the local mirror."""
    config: Config = ctx.obj["config"]

    if not yes:
        if not click.confirm("This will delete all mirrored rows. Continue?"):
            click.echo("Cancelled.")
            return

    try:
        with LocalCacheStore(db_path=config.cache.db_path) as store:
            store.clear()
    except HANDLED_ERRORS as e:
        fail(ctx, e, "clearing cache")
        return

    click.echo("Mirror cleared successfully.")


def main():
    """Entry point for the CLI application."""
    cli()


if __name__ == "__main__":
    main()
