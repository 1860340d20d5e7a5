"""
Manages a Rich Live display for sync runs and concurrent downloads, driven
by the progress events the core emits.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)
from rich.table import Table
from rich.text import Text

from tubewatch.models.events import (
    DownloadCompleted,
    DownloadFailed,
    DownloadProgress,
    DownloadStarted,
    Event,
    EventCallback,
    SyncComplete,
    SyncProgress,
)

log = logging.getLogger("tubewatch")


class ProgressManager:
    """
    Event sink that renders sync and download progress.

    Use it as an async context manager and pass the instance itself as the
    `on_event` callback of the sync manager or download supervisor. An extra
    callback (for example the structured event recorder) receives every event
    as well.
    """

    def __init__(
        self,
        console: Console,
        title: str = "tubewatch",
        forward_to: Optional[EventCallback] = None,
    ):
        self.console = console
        self.title = title
        self._forward_to = forward_to

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=20),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            TextColumn("[magenta]{task.fields[speed]}"),
            "•",
            TextColumn("[cyan]ETA {task.fields[eta]}"),
            console=console,
            transient=False,
        )
        self.overall_progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=console,
        )

        self._live: Optional[Live] = None
        self._layout: Optional[Layout] = None
        self._overall_task_id: Optional[TaskID] = None
        self._item_tasks: dict[str, TaskID] = {}
        self._labels: dict[str, str] = {}

        self._stats: dict[str, Any] = {
            "total": 0,
            "completed": 0,
            "failed": 0,
            "skipped": 0,
            "active": 0,
            "peak_concurrent": 0,
            "start_time": None,
        }

    def initialize_session(self, total: int, description: str = "Overall Progress"):
        self._stats["total"] = total
        self._stats["start_time"] = datetime.now()
        self._overall_task_id = self.overall_progress.add_task(
            description, total=total or None, start=True
        )
        self._update_display()

    def set_label(self, item_id: str, label: str) -> None:
        """Sets the description shown for an item's progress bar."""
        self._labels[item_id] = label if len(label) <= 50 else label[:49] + "…"

    def __call__(self, event: Event) -> None:
        self.handle_event(event)
        if self._forward_to is not None:
            self._forward_to(event)

    def handle_event(self, event: Event) -> None:
        if isinstance(event, SyncProgress):
            self._on_sync_progress(event)
        elif isinstance(event, SyncComplete):
            self._advance_overall()
        elif isinstance(event, DownloadStarted):
            self._on_download_started(event)
        elif isinstance(event, DownloadProgress):
            task_id = self._item_tasks.get(event.item_id)
            if task_id is not None:
                self.progress.update(
                    task_id,
                    completed=event.percent,
                    speed=event.speed or "-",
                    eta=event.eta or "-",
                )
        elif isinstance(event, DownloadCompleted):
            self._finish_item(event.item_id, success=True)
        elif isinstance(event, DownloadFailed):
            self._finish_item(event.item_id, success=False, cancelled=event.cancelled)
        self._update_display()

    def _on_sync_progress(self, event: SyncProgress) -> None:
        if event.status == "success":
            self._stats["completed"] += 1
        elif event.status == "skipped":
            self._stats["skipped"] += 1
        else:
            self._stats["failed"] += 1
        self._advance_overall()

    def _on_download_started(self, event: DownloadStarted) -> None:
        label = self._labels.get(event.item_id, event.item_id)
        self._item_tasks[event.item_id] = self.progress.add_task(
            label, total=100, speed="-", eta="-"
        )
        self._stats["active"] = len(self._item_tasks)
        self._stats["peak_concurrent"] = max(
            self._stats["peak_concurrent"], self._stats["active"]
        )

    def _finish_item(self, item_id: str, success: bool, cancelled: bool = False) -> None:
        task_id = self._item_tasks.pop(item_id, None)
        if task_id is not None:
            self.progress.remove_task(task_id)
        self._stats["active"] = len(self._item_tasks)
        if success:
            self._stats["completed"] += 1
        elif cancelled:
            self._stats["skipped"] += 1
        else:
            self._stats["failed"] += 1
        self._advance_overall()

    def _advance_overall(self) -> None:
        if self._overall_task_id is None:
            return
        self.overall_progress.update(
            self._overall_task_id,
            completed=(
                self._stats["completed"] + self._stats["failed"] + self._stats["skipped"]
            ),
        )

    def _create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="stats", size=7),
            Layout(name="progress", ratio=1),
        )
        return layout

    def _generate_header(self) -> Panel:
        elapsed_str = "00:00:00"
        if self._stats["start_time"]:
            elapsed = (datetime.now() - self._stats["start_time"]).total_seconds()
            elapsed_str = (
                f"{int(elapsed // 3600):02d}:"
                f"{int((elapsed % 3600) // 60):02d}:{int(elapsed % 60):02d}"
            )
        header_text = Text()
        header_text.append(f"📺 {self.title} ", style="bold cyan")
        header_text.append("│ ", style="dim")
        header_text.append(f"Session: {elapsed_str}", style="yellow")
        return Panel(header_text, border_style="cyan")

    def _generate_stats_panel(self) -> Panel:
        stats_table = Table.grid(padding=(0, 2))
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        remaining = (
            self._stats["total"]
            - self._stats["completed"]
            - self._stats["failed"]
            - self._stats["skipped"]
        )
        stats_table.add_row(
            "Done:",
            f"[green]{self._stats['completed']}[/green]",
            "Failed:",
            f"[red]{self._stats['failed']}[/red]",
        )
        stats_table.add_row(
            "Skipped:",
            f"[yellow]{self._stats['skipped']}[/yellow]",
            "Remaining:",
            f"[cyan]{max(remaining, 0)}[/cyan]",
        )
        combined = Table.grid()
        combined.add_row(stats_table)
        if self._overall_task_id is not None:
            combined.add_row(self.overall_progress)
        return Panel(
            combined, title="[bold]📊 Session Statistics[/bold]", border_style="blue"
        )

    def _generate_progress_panel(self) -> Panel:
        if not self._item_tasks:
            return Panel(
                Text("Nothing downloading right now...", style="dim italic", justify="center"),
                title="[bold]📥 Active Downloads[/bold]",
                border_style="green",
            )
        return Panel(
            self.progress,
            title=f"[bold]📥 Active Downloads ({len(self._item_tasks)})[/bold]",
            border_style="green",
        )

    def _update_display(self):
        if not self._layout:
            return
        self._layout["header"].update(self._generate_header())
        self._layout["stats"].update(self._generate_stats_panel())
        self._layout["progress"].update(self._generate_progress_panel())

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        self._layout = self._create_layout()
        self._update_display()
        self._live = Live(
            self._layout,
            console=self.console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            await asyncio.sleep(0.2)
            self._live.stop()
