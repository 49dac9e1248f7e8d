"""CLI entry point for the SDrive client.

Provides commands:
  - login / logout / register / verify: Session management
  - upload: Upload local files (presign, direct transfer, confirm)
  - ls / info: Browse the file listing
  - rename / rm: File lifecycle
  - download: Save a file locally (archived files report a restore notice)
  - archive / restore: Move files between storage tiers
  - watch: Poll restoring files until they are available
  - usage: Account usage
  - presign: Print a curl command for a direct command-line upload
  - config: Manage the stored session token and show settings
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Annotated, TypeVar

import keyring
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from sdrive.api.exceptions import BackendError, SessionExpiredError
from sdrive.config import KEY_NAME, SERVICE_NAME, TOKEN_ENV, load_client_config
from sdrive.listing.events import EventKind, ListingEvent
from sdrive.models import BatchUploadResult, FileRecord, StorageTier
from sdrive.services.drive import Drive
from sdrive.tiers.manager import RestoreTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

app = typer.Typer(
    help="SDrive - upload, browse and manage files in your cloud drive",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (session token, settings)")
app.add_typer(config_app, name="config")

_TIER_STYLES = {
    StorageTier.STANDARD: "green",
    StorageTier.ARCHIVE: "blue",
    StorageTier.RESTORING: "yellow",
}


@dataclass
class CliState:
    config_path: Path | None = None


@app.callback()
def app_callback(
    ctx: typer.Context,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Also write logs to this file"),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to sdrive.json"),
    ] = None,
) -> None:
    """Configure logging and remember global options."""
    _configure_logging(verbose, log_file)
    ctx.obj = CliState(config_path=config_path)


def _configure_logging(verbose: bool, log_file: Path | None) -> None:
    root = logging.getLogger("sdrive")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if verbose:
        root.addHandler(RichHandler(console=console, show_path=False))
    if log_file is not None:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(handler)
        root.setLevel(logging.DEBUG)


def _run(ctx: typer.Context, action: Callable[[Drive], Awaitable[T]]) -> T:
    """Run *action* against a fresh :class:`Drive`, mapping errors to exit 1."""
    state: CliState = ctx.obj or CliState()

    async def _main() -> T:
        async with Drive(load_client_config(state.config_path)) as drive:
            return await action(drive)

    try:
        return asyncio.run(_main())
    except SessionExpiredError:
        console.print("[red]Session expired. Please log in again:[/red] [bold]sdrive login[/bold]")
        raise typer.Exit(code=1)
    except BackendError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)
    except RestoreTimeoutError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(code=1)
    except (FileNotFoundError, FileExistsError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)


def _format_size(size: int | None) -> str:
    if size is None:
        return "-"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _tier_label(tier: StorageTier) -> str:
    return f"[{_TIER_STYLES[tier]}]{tier.value}[/{_TIER_STYLES[tier]}]"


def _files_table(records: list[FileRecord], title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Tier")
    table.add_column("Modified", style="dim")
    for r in records:
        modified = r.last_modified.strftime("%Y-%m-%d %H:%M") if r.last_modified else "-"
        table.add_row(r.id, r.display_name, _format_size(r.size_bytes), _tier_label(r.tier), modified)
    return table


# ----------------------------------------------------------------------
# Session
# ----------------------------------------------------------------------


@app.command()
def login(
    ctx: typer.Context,
    email: Annotated[str, typer.Option("--email", "-e", prompt=True, help="Account email")],
    password: Annotated[
        str, typer.Option("--password", prompt=True, hide_input=True, help="Account password")
    ],
) -> None:
    """Log in and store the session token in the system keyring."""
    _run(ctx, lambda drive: drive.login(email, password))
    console.print(f"[green]✓[/green] Logged in as [bold]{email}[/bold]")


@app.command()
def logout() -> None:
    """Remove the stored session token."""
    from sdrive.session import SessionStore

    SessionStore().logout()
    console.print("[green]✓[/green] Logged out")


@app.command()
def register(
    ctx: typer.Context,
    email: Annotated[str, typer.Option("--email", "-e", prompt=True, help="Account email")],
    password: Annotated[
        str,
        typer.Option(
            "--password",
            prompt=True,
            hide_input=True,
            confirmation_prompt=True,
            help="Account password",
        ),
    ],
) -> None:
    """Create an account. A verification link is emailed to you."""
    _run(ctx, lambda drive: drive.register(email, password))
    console.print(
        "[green]✓[/green] Registration successful. "
        "Check your email for a verification link, then run [bold]sdrive verify TOKEN[/bold]."
    )


@app.command()
def verify(
    ctx: typer.Context,
    token: Annotated[str, typer.Argument(help="Token from the verification email")],
) -> None:
    """Verify your email address."""
    _run(ctx, lambda drive: drive.verify_email(token))
    console.print("[green]✓[/green] Email verified. You can now log in.")


# ----------------------------------------------------------------------
# Upload
# ----------------------------------------------------------------------


@app.command()
def upload(
    ctx: typer.Context,
    paths: Annotated[list[Path], typer.Argument(help="Files to upload", exists=True, dir_okay=False)],
    archive: Annotated[
        bool,
        typer.Option("--archive", help="Store directly in archive (cold) storage"),
    ] = False,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-n", help="Max simultaneous transfers (default: unlimited)"),
    ] = None,
) -> None:
    """Upload files: one ticket request, parallel direct transfers, one confirmation."""
    from sdrive.upload.progress import UploadProgressTracker

    tier = StorageTier.ARCHIVE if archive else None

    async def _upload(drive: Drive) -> BatchUploadResult:
        if concurrency is not None:
            drive.config.max_concurrent_transfers = concurrency
        with UploadProgressTracker(console=console) as tracker:
            return await drive.upload_paths(paths, tier=tier, progress=tracker)

    result = _run(ctx, _upload)
    _print_upload_result(result)
    if result.failures or result.confirmation_warning:
        raise typer.Exit(code=1)


def _print_upload_result(result: BatchUploadResult) -> None:
    summary = result.summary()
    table = Table(title="Upload Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Count", justify="right")
    table.add_row("Total files", str(summary["total"]))
    table.add_row("Succeeded", f"[green]{summary['succeeded']}[/green]")
    table.add_row("Failed", f"[red]{summary['failed']}[/red]")
    console.print(Panel(table, title="Upload Complete"))

    if result.failures:
        console.print("[red]Some files failed to upload:[/red]")
        for description in result.failed_descriptions:
            console.print(f"  • {description}")
    if result.confirmation_warning:
        console.print(Panel(result.confirmation_warning, title="Warning", style="yellow"))


@app.command()
def presign(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="Local file to upload from the command line")],
) -> None:
    """Print a curl command that uploads PATH straight to storage."""
    command = _run(ctx, lambda drive: drive.files.presign_command(path))
    console.print(Panel(command, title="Run this command to upload", expand=False))


# ----------------------------------------------------------------------
# Listing
# ----------------------------------------------------------------------


@app.command("ls")
def list_files(
    ctx: typer.Context,
    page: Annotated[int, typer.Option("--page", "-p", help="Page number", min=1)] = 1,
    search: Annotated[
        str | None, typer.Option("--search", "-s", help="Filter names on this page")
    ] = None,
) -> None:
    """List files, one page at a time."""

    async def _list(drive: Drive) -> tuple[list[FileRecord], int, int, int]:
        await drive.cache.load_page(page)
        records = drive.cache.search(search) if search else drive.cache.records
        return records, drive.cache.total_pages, drive.cache.total, drive.cache.total_space_used()

    records, total_pages, total, used = _run(ctx, _list)
    if not records:
        console.print("[yellow]No files found.[/yellow]")
        return
    console.print(_files_table(records, f"Files (page {page}/{total_pages}, {total} total)"))
    console.print(f"[dim]Space used on this page: {_format_size(used)}[/dim]")


@app.command()
def info(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="File ID or storage key")],
) -> None:
    """Show one file's details."""
    record = _run(ctx, lambda drive: drive.tiers.resolve(file_id))
    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("ID", record.id)
    table.add_row("Name", record.display_name)
    table.add_row("Key", record.object_key)
    table.add_row("Size", _format_size(record.size_bytes))
    table.add_row("Tier", _tier_label(record.tier))
    table.add_row("Modified", str(record.last_modified or "-"))
    table.add_row("URL", record.public_url or "-")
    console.print(Panel(table, title=record.display_name))


# ----------------------------------------------------------------------
# File lifecycle
# ----------------------------------------------------------------------


@app.command()
def rename(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="File ID or storage key")],
    new_name: Annotated[str, typer.Argument(help="New file name")],
) -> None:
    """Rename a file."""
    record = _run(ctx, lambda drive: drive.files.rename(file_id, new_name))
    console.print(f"[green]✓[/green] Renamed to [bold]{record.display_name}[/bold]")


@app.command("rm")
def remove(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="File ID or storage key")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
) -> None:
    """Delete a file."""
    if not yes:
        typer.confirm(f"Delete {file_id}?", abort=True)
    record = _run(ctx, lambda drive: drive.files.delete(file_id))
    console.print(f"[green]✓[/green] Deleted [bold]{record.display_name}[/bold]")


@app.command()
def download(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="File ID or storage key")],
    output: Annotated[
        Path, typer.Option("--output", "-o", help="Directory or file path to save to")
    ] = Path("."),
    overwrite: Annotated[bool, typer.Option("--overwrite", help="Replace an existing file")] = False,
) -> None:
    """Download a file. Archived files must be restored first."""
    result = _run(ctx, lambda drive: drive.files.download(file_id, output, overwrite, console))
    if result.path is None:
        console.print(f"[yellow]{result.link.message}[/yellow]")
        return
    console.print(
        f"[green]✓[/green] Saved [bold]{result.path}[/bold] ({_format_size(result.bytes_written)})"
    )


@app.command()
def archive(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="File ID or storage key")],
) -> None:
    """Move a file to archive (cold) storage."""
    result = _run(ctx, lambda drive: drive.tiers.request_tier_change(file_id, StorageTier.ARCHIVE))
    if result.informational:
        console.print(f"[yellow]{result.message}[/yellow]")
        return
    console.print(f"[green]✓[/green] {result.record.display_name} is now {_tier_label(result.record.tier)}")


@app.command()
def restore(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="File ID or storage key")],
    wait: Annotated[bool, typer.Option("--wait", help="Block until restoration completes")] = False,
    timeout: Annotated[
        float, typer.Option("--timeout", help="Seconds to wait with --wait")
    ] = 48 * 3600,
) -> None:
    """Restore an archived file to standard storage."""
    from sdrive.tiers.manager import TierChangeResult

    async def _restore(drive: Drive) -> tuple[TierChangeResult, FileRecord]:
        result = await drive.tiers.request_tier_change(file_id, StorageTier.STANDARD)
        record = result.record
        if wait and record.tier is StorageTier.RESTORING:
            console.print(f"[yellow]{result.message}[/yellow]")
            with console.status("Waiting for restoration..."):
                record = await drive.tiers.wait_until_restored(record.id, timeout=timeout)
        return result, record

    result, record = _run(ctx, _restore)
    if record.tier is StorageTier.STANDARD:
        console.print(f"[green]✓[/green] {record.display_name} is available")
    elif not wait:
        console.print(f"[yellow]{result.message}[/yellow]")


@app.command()
def watch(
    ctx: typer.Context,
    page: Annotated[int, typer.Option("--page", "-p", help="Listing page to watch", min=1)] = 1,
) -> None:
    """Poll restoring files on a page until none are left (Ctrl+C to stop)."""

    def _on_event(event: ListingEvent) -> None:
        if event.kind is EventKind.RECORD_UPDATED and event.record is not None:
            console.print(f"{event.record.display_name}: {_tier_label(event.record.tier)}")
        elif event.kind is EventKind.RESTORE_WATCH_EXPIRED and event.record is not None:
            console.print(
                f"[yellow]{event.record.display_name} is still restoring; "
                "no longer polling it.[/yellow]"
            )

    async def _watch(drive: Drive) -> None:
        await drive.cache.load_page(page)
        drive.events.subscribe(
            _on_event, {EventKind.RECORD_UPDATED, EventKind.RESTORE_WATCH_EXPIRED}
        )
        if not drive.cache.in_tier(StorageTier.RESTORING):
            console.print("[green]No files are being restored on this page.[/green]")
            return
        async with drive.refresher as refresher:
            while any(
                refresher.is_watching(r.id) for r in drive.cache.in_tier(StorageTier.RESTORING)
            ):
                await asyncio.sleep(1)

    try:
        _run(ctx, _watch)
    except KeyboardInterrupt:
        console.print("[dim]Stopped watching.[/dim]")


@app.command()
def usage(ctx: typer.Context) -> None:
    """Show account storage usage."""
    data = _run(ctx, lambda drive: drive.files.account_usage())
    table = Table(title="Account Usage")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    for key, value in data.items():
        table.add_row(key.replace("_", " ").capitalize(), str(value))
    console.print(table)


# ----------------------------------------------------------------------
# Config
# ----------------------------------------------------------------------


@config_app.command("set-token")
def set_token(
    token: Annotated[str, typer.Argument(help="Session token to store in system keyring")],
) -> None:
    """Store a session token in the system keyring (service: sdrive)."""
    if not token or token.strip() == "":
        console.print("[red]Error:[/red] Token cannot be empty")
        raise typer.Exit(code=1)
    keyring.set_password(SERVICE_NAME, KEY_NAME, token.strip())
    console.print(f"[green]✓[/green] Token stored in system keyring (service: {SERVICE_NAME})")


@config_app.command("get-token")
def show_token() -> None:
    """Display the stored session token (masked)."""
    token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if not token:
        console.print(
            "[yellow]No token found in keyring.[/yellow]\n"
            f"Log in with [bold]sdrive login[/bold] or export {TOKEN_ENV}."
        )
        raise typer.Exit(code=1)

    if len(token) > 8:
        masked = token[:8] + "*" * (len(token) - 8)
    else:
        masked = token[:2] + "*" * max(1, len(token) - 2)
    console.print(f"[green]Token:[/green] {masked}")
    console.print(f"[dim](stored in service: {SERVICE_NAME})[/dim]")


@config_app.command("remove-token")
def remove_token() -> None:
    """Delete the stored session token from the system keyring."""
    if not keyring.get_password(SERVICE_NAME, KEY_NAME):
        console.print("[yellow]Warning:[/yellow] No token found in keyring.\nNothing to remove.")
        return
    keyring.delete_password(SERVICE_NAME, KEY_NAME)
    console.print(f"[green]✓[/green] Token removed from system keyring (service: {SERVICE_NAME})")


@config_app.command("show")
def show_config(ctx: typer.Context) -> None:
    """Show the effective client settings."""
    state: CliState = ctx.obj or CliState()
    config = load_client_config(state.config_path)
    table = Table(title="SDrive Settings")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for key, value in asdict(config).items():
        table.add_row(key, str(value))
    console.print(table)
