"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from tubewatch import __version__
from tubewatch.api.client import CatalogueClient
from tubewatch.api.credentials import CredentialPool
from tubewatch.core.download_supervisor import DownloadSupervisor
from tubewatch.core.metrics import DEFAULT_RANK_LIMIT, rank, resolve_metric
from tubewatch.core.sync_manager import SyncManager
from tubewatch.exceptions import (
    ConfigurationError,
    NotFoundError,
    ProcessError,
    TubewatchError,
)
from tubewatch.models.config import AppConfig
from tubewatch.storage.config_manager import ConfigManager
from tubewatch.storage.database import CatalogueDB
from tubewatch.utils.formatting import parse_date_range
from tubewatch.utils.structured_logger import EventRecorder, create_structured_logger

from .formatters import (
    print_aggregate_table,
    print_config,
    print_download_summary,
    print_keys_table,
    print_rank_table,
    print_sync_summary,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("tubewatch")

app = typer.Typer(
    name="tubewatch",
    help=(
        "Monitor YouTube channels, rank their viral uploads, and download them."
        " Use 'tubewatch <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "tubewatch"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"
DB_FILE = CONFIG_DIR / "tubewatch.db"

KINDS = ("all", "video", "short")
UNCATEGORIZED = "uncategorized"


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v for debug, -vv to include libraries).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    log_events: bool = typer.Option(
        False,
        "--log-events",
        help="Write a JSON-lines event log to the config directory's logs folder.",
    ),
):
    """tubewatch CLI"""
    if version:
        console.print(f"[bold]tubewatch[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    if verbose >= 1:
        logging.getLogger("tubewatch").setLevel("DEBUG")
    if verbose >= 2:
        logging.getLogger().setLevel("DEBUG")

    ctx.obj = {"log_events": log_events}

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


def _load_config(cli_options: Optional[dict] = None) -> AppConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


def _event_recorder(ctx: typer.Context):
    """Returns (recorder, base_logger) when --log-events is set, else (None, None)."""
    if not (ctx.obj or {}).get("log_events"):
        return None, None
    base, sync_logger, download_logger = create_structured_logger(
        CONFIG_DIR / "logs", enable_json=True
    )
    log.info(f"Writing event log to [dim]{base.json_path}[/dim]")
    return EventRecorder(sync_logger, download_logger), base


async def _resolve_group(
    db: CatalogueDB, name: Optional[str], uncategorized: bool = False
) -> Optional[int]:
    """Maps a group name to its id; -1 selects channels without a group."""
    if uncategorized or (name and name.lower() == UNCATEGORIZED):
        return -1
    if not name:
        return None
    group_id = await db.find_group(name)
    if group_id is None:
        raise NotFoundError(f"Group not found: {name}")
    return group_id


@app.command()
def init(
    download_path: str = typer.Option(
        ..., "--download-path", "-d", help="Root folder for downloaded videos."
    ),
    api_key: Optional[str] = typer.Option(
        None, "--key", "-k", help="A YouTube Data API v3 key to register."
    ),
    proxy_url: str = typer.Option("", "--proxy", help="Proxy URL passed to yt-dlp."),
    cookie_source: str = typer.Option(
        "",
        "--cookies",
        help="Cookie file path, or 'browser:<name>' to read a browser profile.",
    ),
    workers: int = typer.Option(
        3, "--workers", "-w", help="Number of simultaneous downloads."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration."
    ),
):
    """Create the configuration file and the catalogue database."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "download_path": str(Path(download_path).expanduser()),
        "proxy_url": proxy_url,
        "cookie_source": cookie_source,
        "max_concurrent_downloads": workers,
    }
    config_manager = ConfigManager(CONFIG_FILE)
    config_manager.save_new_config(settings)
    config_manager.load_config()
    console.print(f"[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")

    async def _init_db():
        db = CatalogueDB(DB_FILE)
        if api_key:
            pool = CredentialPool(db)
            if await pool.add_credential(api_key):
                console.print("[green]✓ API key registered.[/green]")

    asyncio.run(_init_db())
    console.print(
        "Next: [cyan]tubewatch add-channel @handle[/cyan], then [cyan]tubewatch sync[/cyan]"
    )


@app.command(name="add-key")
def add_key(
    key: str = typer.Argument(..., help="A YouTube Data API v3 key."),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="A label for the key."),
):
    """Register an API key in the rotation pool."""

    async def _add():
        pool = CredentialPool(CatalogueDB(DB_FILE))
        if await pool.add_credential(key, name):
            console.print("[green]✓ API key added.[/green]")
        else:
            console.print("[yellow]This API key is already registered.[/yellow]")

    asyncio.run(_add())


@app.command()
def keys():
    """List API keys with today's quota usage."""

    async def _list():
        config = _load_config()
        pool = CredentialPool(
            CatalogueDB(DB_FILE), reset_offset_hours=config.quota_reset_offset_hours
        )
        print_keys_table(await pool.list_credentials())

    asyncio.run(_list())


@app.command(name="add-group")
def add_group(name: str = typer.Argument(..., help="Group name.")):
    """Create a channel group."""
    if name.lower() == UNCATEGORIZED:
        raise typer.BadParameter(f"'{UNCATEGORIZED}' is reserved.")

    async def _add():
        group_id = await CatalogueDB(DB_FILE).add_group(name)
        console.print(f"[green]✓ Group '{name}' ready (id {group_id}).[/green]")

    asyncio.run(_add())


@app.command(name="add-channel")
def add_channel(
    identifier: str = typer.Argument(..., help="Channel '@handle' or channel id."),
    group: Optional[str] = typer.Option(None, "--group", "-g", help="Group name."),
):
    """Add a channel and sync its last 30 days."""

    async def _add():
        config = _load_config()
        db = CatalogueDB(DB_FILE)
        group_id = await _resolve_group(db, group)
        client = CatalogueClient()
        try:
            manager = SyncManager(
                db,
                client,
                CredentialPool(db, reset_offset_hours=config.quota_reset_offset_hours),
                max_concurrent=config.sync_concurrency,
            )
            summary = await manager.add_channel(
                identifier, None if group_id == -1 else group_id
            )
        finally:
            await client.close()
        console.print(
            f"[green]✓ {summary.channel_name}: {summary.items_synced} item(s) stored "
            f"({summary.quota_units} quota units).[/green]"
        )

    asyncio.run(_add())


@app.command()
def sync(
    ctx: typer.Context,
    channel_ids: Optional[list[str]] = typer.Argument(  # noqa: B008
        None, help="Channel ids to sync (default: all channels)."
    ),
    group: Optional[str] = typer.Option(
        None, "--group", "-g", help="Only channels in this group ('uncategorized' allowed)."
    ),
    date_range: Optional[str] = typer.Option(
        None,
        "--range",
        "-r",
        help="'all', 'now-<n>days', 'now-<n>months', 'now-<n>year', or 3d/7d/30d.",
    ),
):
    """Refresh channels and their recent items from the YouTube Data API."""

    async def _sync():
        config = _load_config()
        db = CatalogueDB(DB_FILE)
        group_id = await _resolve_group(db, group)
        since = parse_date_range(date_range or config.default_date_range)
        total = (
            len(set(channel_ids)) if channel_ids else len(await db.list_channels(group_id))
        )
        if total == 0:
            console.print("[yellow]No channels to sync.[/yellow]")
            return

        recorder, event_log = _event_recorder(ctx)
        if recorder:
            recorder.sync_logger.run_started(total, since.isoformat() if since else None)
        client = CatalogueClient(max_connections=config.sync_concurrency)
        start_time = time.monotonic()
        try:
            async with ProgressManager(
                console, title="tubewatch sync", forward_to=recorder
            ) as progress_manager:
                progress_manager.initialize_session(total, "Channels")
                manager = SyncManager(
                    db,
                    client,
                    CredentialPool(db, reset_offset_hours=config.quota_reset_offset_hours),
                    on_event=progress_manager,
                    max_concurrent=config.sync_concurrency,
                )
                report = await manager.sync_all(channel_ids or None, since, group_id)
        finally:
            await client.close()
            if event_log:
                event_log.close()

        print_sync_summary(report, time.monotonic() - start_time)
        if report.failed:
            raise typer.Exit(code=1)

    asyncio.run(_sync())


@app.command(name="download")
def download_command(
    ctx: typer.Context,
    item_ids: list[str] = typer.Argument(..., help="Video ids to download."),  # noqa: B008
    title: Optional[str] = typer.Option(
        None, "--title", help="Title to use for an item not in the catalogue."
    ),
    channel: Optional[str] = typer.Option(
        None, "--channel", help="Channel name to use for an item not in the catalogue."
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", "-w", help="Number of simultaneous downloads."
    ),
):
    """Download items with yt-dlp into the configured download path."""

    async def _download():
        config = _load_config({"max_concurrent_downloads": workers})
        if not config.download_path:
            raise ConfigurationError(
                "No download path configured. Set 'download_path' in config.ini."
            )
        db = CatalogueDB(DB_FILE)
        unique_ids = list(dict.fromkeys(item_ids))

        recorder, event_log = _event_recorder(ctx)
        start_time = time.monotonic()
        try:
            async with ProgressManager(
                console, title="tubewatch downloads", forward_to=recorder
            ) as progress_manager:
                progress_manager.initialize_session(len(unique_ids), "Downloads")
                supervisor = DownloadSupervisor(db, config, on_event=progress_manager)
                for item_id in unique_ids:
                    target = await db.get_download_target(item_id)
                    progress_manager.set_label(item_id, target.title if target else title or item_id)
                results = await asyncio.gather(
                    *(supervisor.start(item_id, title, channel) for item_id in unique_ids),
                    return_exceptions=True,
                )
                progress_stats = progress_manager.get_statistics()
        finally:
            if event_log:
                event_log.close()

        completed = failed = 0
        for item_id, result in zip(unique_ids, results):
            if isinstance(result, ProcessError):
                failed += 1
            elif isinstance(result, TubewatchError):
                failed += 1
                console.print(f"[red]✗ {item_id}: {result}[/red]")
            elif isinstance(result, BaseException):
                raise result
            else:
                completed += 1
        cancelled = progress_stats.get("skipped", 0)
        print_download_summary(
            completed, failed - cancelled, cancelled,
            time.monotonic() - start_time, progress_stats,
        )
        if failed:
            raise typer.Exit(code=1)

    asyncio.run(_download())


@app.command(name="rank")
def rank_command(
    date_range: Optional[str] = typer.Option(
        None, "--range", "-r", help="Publish window: 3d, 7d, 30d, 'all' or 'now-<n>days'."
    ),
    sort: str = typer.Option(
        "views", "--sort", "-s", help="views | vph | viral | er | z_score"
    ),
    order: str = typer.Option("desc", "--order", help="desc | asc"),
    limit: int = typer.Option(DEFAULT_RANK_LIMIT, "--limit", "-n", min=1),
    group: Optional[str] = typer.Option(
        None, "--group", "-g", help="Only channels in this group ('uncategorized' allowed)."
    ),
    kind: str = typer.Option("all", "--type", "-t", help="all | video | short"),
    by: str = typer.Option("items", "--by", help="items | channels | groups"),
):
    """Rank recent items, channels, or groups by views and virality."""
    if kind not in KINDS:
        raise typer.BadParameter(f"--type must be one of {', '.join(KINDS)}.")
    if by not in ("items", "channels", "groups"):
        raise typer.BadParameter("--by must be one of items, channels, groups.")
    try:
        metric = resolve_metric(sort)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e

    async def _rank():
        db = CatalogueDB(DB_FILE)
        if date_range is None and CONFIG_FILE.is_file():
            window = _load_config().default_date_range
        else:
            window = date_range or "7d"
        since = parse_date_range(window)
        group_id = await _resolve_group(db, group)

        if by == "groups":
            rows = await db.group_stats(since, kind)
            print_aggregate_table(rows, f"Groups by average views ({window})", "Group")
        elif by == "channels":
            rows = await db.channel_stats(since, group_id, kind, limit)
            print_aggregate_table(rows, f"Channels by total views ({window})", "Channel")
        else:
            candidates = await db.ranking_candidates(since, group_id, kind)
            ranked = rank(candidates, metric=metric, order=order, limit=limit)
            print_rank_table(ranked, metric, f"Top {limit} by {metric} ({window})")

    asyncio.run(_rank())


@app.command()
def recalc():
    """Recompute every channel's view baseline from stored items."""

    async def _recalc():
        count = await CatalogueDB(DB_FILE).recompute_all_baselines()
        console.print(f"[green]✓ Recomputed baselines for {count} channel(s).[/green]")

    asyncio.run(_recalc())


@app.command(name="clear-history")
def clear_history(
    item_id: Optional[str] = typer.Argument(
        None, help="Only clear this item (default: all finished downloads)."
    ),
):
    """Reset finished, failed and cancelled downloads back to idle."""

    async def _clear():
        supervisor = DownloadSupervisor(CatalogueDB(DB_FILE), _load_config())
        cleared = await supervisor.clear_history(item_id)
        console.print(f"[green]✓ Cleared download history for {cleared} item(s).[/green]")

    asyncio.run(_clear())


@app.command(name="show-config")
def show_config():
    """Display the current configuration."""
    if not CONFIG_FILE.is_file():
        console.print(
            "[red]✗ Config file not found.[/] Run [cyan]tubewatch init[/cyan] first."
        )
        raise typer.Exit(code=1)
    config = _load_config()
    print_config(CONFIG_FILE, config.model_dump(exclude={"config_path"}))


@app.command()
def vacuum():
    """Optimize the catalogue database."""

    async def _vacuum():
        console.print("[cyan]Optimizing catalogue database...[/cyan]")
        if await CatalogueDB(DB_FILE).vacuum():
            console.print("[green]✓ Database optimized.[/green]")
        else:
            console.print("[red]✗ Optimization failed.[/red]")

    asyncio.run(_vacuum())
