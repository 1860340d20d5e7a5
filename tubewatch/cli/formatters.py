"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tubewatch.models.records import Credential, RankedItem
from tubewatch.models.stats import SyncReport
from tubewatch.utils.formatting import format_count, format_duration


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `tubewatch init` to create a configuration file.",
            "• Check `download_path` and the other values with `tubewatch show-config`.",
        ],
        "NoActiveCredentialError": [
            "• Add a YouTube Data API key with `tubewatch add-key <KEY>`.",
            "• List configured keys and their state with `tubewatch keys`.",
        ],
        "CredentialsExhaustedError": [
            "• Every API key hit its daily quota.",
            "• Quota resets daily (around midnight Pacific time).",
            "• Add another key with `tubewatch add-key`.",
        ],
        "RemoteError": [
            "• The YouTube Data API rejected the request.",
            "• A 403 usually means the key's quota is exhausted or the API is not enabled.",
            "• Status 0 means the network request itself failed.",
        ],
        "DecodeError": [
            "• The API answered with an unexpected response.",
            "• Please try again in a few minutes.",
        ],
        "ProcessError": [
            "• Check that yt-dlp is installed and on your PATH (`downloader_path`).",
            "• Update yt-dlp; YouTube changes often break older versions.",
            "• Age-restricted items may need `cookie_source` set.",
        ],
        "NotFoundError": [
            "• Check the channel or item id.",
            "• Run `tubewatch sync` to refresh the catalogue.",
        ],
        "CircuitBreakerError": [
            "• A quota failure stopped the remaining work for this run.",
            "• Try again after the daily quota reset.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding cookie file locations."""
    console = Console()
    content = ""
    for key, value in sorted(config_data.items()):
        if key == "cookie_source" and value and not str(value).startswith("browser:"):
            value = "[hidden]"
        content += f"{key} = {escape(str(value))}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_keys_table(credentials: list[Credential]):
    """Displays the API keys with today's usage."""
    console = Console()
    if not credentials:
        console.print("[dim]No API keys configured yet.[/dim]")
        return

    table = Table(title="API Keys", box=box.ROUNDED)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Key")
    table.add_column("Used Today", justify="right", style="green")
    table.add_column("Last Used", style="dim")
    table.add_column("Status")
    for cred in credentials:
        masked = f"{cred.key[:6]}…{cred.key[-4:]}" if len(cred.key) > 10 else "****"
        if not cred.is_active:
            status = "[dim]inactive[/dim]"
        elif cred.is_quota_exhausted:
            status = "[red]exhausted[/red]"
        else:
            status = "[green]ok[/green]"
        last_used = cred.last_used.strftime("%Y-%m-%d %H:%M") if cred.last_used else "never"
        table.add_row(
            str(cred.id),
            escape(cred.name or "-"),
            masked,
            str(cred.usage_today),
            last_used,
            status,
        )
    console.print(table)


def print_rank_table(ranked: list[RankedItem], metric: str, title: str):
    """Displays ranked items with all computed scores."""
    console = Console()
    if not ranked:
        console.print("[dim]No items in the selected window.[/dim]")
        return

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Rank", style="dim", justify="right")
    table.add_column("Title", style="cyan", max_width=48, overflow="ellipsis")
    table.add_column("Channel", style="yellow", max_width=24, overflow="ellipsis")
    table.add_column("Views", justify="right")
    table.add_column("VPH", justify="right")
    table.add_column("Viral", justify="right")
    table.add_column("Z", justify="right")
    table.add_column("ER", justify="right")
    table.add_column("Published", style="dim")

    highlight = {
        "views": 3,
        "vph": 4,
        "viral_ratio": 5,
        "z_score": 6,
        "engagement_rate": 7,
    }.get(metric)

    for i, item in enumerate(ranked, 1):
        c = item.candidate
        cells = [
            str(i),
            escape(("🎬 " if c.is_short else "") + c.title),
            escape(c.channel_name),
            format_count(item.views),
            format_count(item.vph),
            f"{item.viral_ratio:.2f}x",
            f"{item.z_score:+.2f}",
            f"{item.engagement_rate * 100:.2f}%",
            c.published_at.strftime("%Y-%m-%d"),
        ]
        if highlight is not None:
            cells[highlight] = f"[bold green]{cells[highlight]}[/bold green]"
        table.add_row(*cells)
    console.print(table)


def print_aggregate_table(rows: list[dict[str, Any]], title: str, label: str):
    """Displays group or channel view aggregates."""
    console = Console()
    if not rows:
        console.print("[dim]No items in the selected window.[/dim]")
        return

    avg_key = "avg_view_count" if rows and "avg_view_count" in rows[0] else "avg_views"
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Rank", style="dim", justify="right")
    table.add_column(label, style="cyan")
    table.add_column("Items", justify="right")
    table.add_column("Total Views", justify="right", style="green")
    table.add_column("Avg Views", justify="right")
    for i, row in enumerate(rows, 1):
        table.add_row(
            str(i),
            escape(str(row["name"])),
            str(row["video_count"]),
            format_count(row["total_views"] or 0),
            format_count(row[avg_key] or 0),
        )
    console.print(table)


def print_sync_summary(report: SyncReport, duration_s: float):
    """Displays the final summary of a sync run."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=18)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Synced:", f"[bold green]{report.succeeded}[/bold green]")
    if report.skipped:
        stats_table.add_row("○ Skipped:", f"[yellow]{report.skipped}[/yellow]")
    if report.failed:
        stats_table.add_row("✗ Failed:", f"[bold red]{report.failed}[/bold red]")
    stats_table.add_row("", "")
    stats_table.add_row("Items Stored:", f"[cyan]{report.items_synced}[/cyan]")
    stats_table.add_row("Quota Used:", f"[magenta]{report.quota_units} units[/magenta]")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")
    if report.breaker_reason:
        stats_table.add_row("", "")
        stats_table.add_row(
            "Stopped:", f"[red]{escape(report.breaker_reason[:120])}[/red]"
        )

    border_color = "green" if not report.failed and not report.skipped else "yellow"
    console.print()
    console.print(
        Panel(
            stats_table,
            title="📺 [bold]Sync Complete[/bold]",
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    for channel_id, error in list(report.errors.items())[:10]:
        console.print(f"  [red]✗[/red] [dim]{channel_id}[/dim] {escape(error[:160])}")
    console.print()


def print_download_summary(
    completed: int, failed: int, cancelled: int, duration_s: float,
    progress_stats: Optional[dict] = None,
):
    """Displays the final summary of a download session."""
    console = Console()
    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=18)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Downloaded:", f"[bold green]{completed}[/bold green]")
    if cancelled:
        stats_table.add_row("○ Cancelled:", f"[yellow]{cancelled}[/yellow]")
    if failed:
        stats_table.add_row("✗ Failed:", f"[bold red]{failed}[/bold red]")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")
    if progress_stats:
        stats_table.add_row(
            "Peak Concurrent:",
            f"[green]{progress_stats.get('peak_concurrent', 0)}[/green]",
        )

    console.print()
    console.print(
        Panel(
            stats_table,
            title="📥 [bold]Downloads Finished[/bold]",
            border_style="green" if not failed else "yellow",
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
