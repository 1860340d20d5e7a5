"""
Supervises yt-dlp child processes: bounded concurrency, line-level progress
parsing, cancellation, and the persisted per-item download state.
"""

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from tubewatch.exceptions import ConfigurationError, NotFoundError, ProcessError
from tubewatch.models.config import AppConfig
from tubewatch.models.events import (
    DownloadCompleted,
    DownloadFailed,
    DownloadProgress,
    DownloadStarted,
    Event,
    EventCallback,
    ignore_event,
)
from tubewatch.models.records import DownloadTarget
from tubewatch.storage.database import CatalogueDB
from tubewatch.utils.path import (
    build_output_template,
    build_target_dir,
    create_dir,
    find_downloaded_file,
)

from .progress_parser import PATH_EVENTS, PROGRESS_TEMPLATE, Progress, classify_line

log = logging.getLogger(__name__)

FORMAT_SELECTOR = (
    "bestvideo[ext=mp4][vcodec^=avc]+bestaudio[ext=m4a]/best[ext=mp4]/best"
)
ITEM_URL = "https://www.youtube.com/watch?v={}"
STREAM_LIMIT = 1024 * 1024
STDERR_BUFFER_CHARS = 1000
ERROR_TEXT_CHARS = 200
PROGRESS_INTERVAL = 0.1
DRAIN_GRACE_SECONDS = 2.0
UNEXPECTED_FAILURE = "Download cancelled or failed unexpectedly"


@dataclass
class DownloadOutcome:
    item_id: str
    path: Optional[str]


class DownloadSupervisor:
    """
    Runs one yt-dlp process per requested item, at most `limit` at a time.

    The limiter is a semaphore that is replaced, never resized, when the
    concurrency changes; downloads already holding a permit of the old one run
    to completion. Running processes are tracked in a job table keyed by item
    id so they can be cancelled.
    """

    def __init__(
        self,
        db: CatalogueDB,
        config: AppConfig,
        on_event: EventCallback = ignore_event,
        executable: Optional[Sequence[str]] = None,
    ):
        self._db = db
        self._config = config
        self._on_event = on_event
        self._executable = list(executable) if executable else [config.downloader_path]

        self._limiter = asyncio.Semaphore(config.max_concurrent_downloads)
        self._limiter_lock = asyncio.Lock()
        self._jobs: dict[str, int] = {}
        self._cancel_requested: set[str] = set()
        self._jobs_lock = asyncio.Lock()

    @property
    def active_downloads(self) -> list[str]:
        return list(self._jobs)

    async def set_concurrency(self, limit: int) -> None:
        """Installs a new limiter with `limit` permits (at least one)."""
        limit = max(1, limit)
        async with self._limiter_lock:
            self._limiter = asyncio.Semaphore(limit)
        log.debug(f"Download concurrency set to {limit}")

    async def _current_limiter(self) -> asyncio.Semaphore:
        async with self._limiter_lock:
            return self._limiter

    def build_command(self, item_id: str, output_template: str) -> list[str]:
        """Builds the downloader argument list for one item."""
        cmd = [
            *self._executable,
            "-f",
            FORMAT_SELECTOR,
            "--recode-video",
            "mp4",
            "-o",
            output_template,
            "--no-playlist",
            "--newline",
            "--progress-template",
            PROGRESS_TEMPLATE,
        ]
        if self._config.proxy_url:
            cmd += ["--proxy", self._config.proxy_url]

        browser = self._config.cookie_browser
        if browser:
            cmd += ["--cookies-from-browser", browser]
        elif self._config.cookie_source:
            cookie_file = Path(self._config.cookie_source).expanduser()
            if cookie_file.is_file():
                cmd += ["--cookies", str(cookie_file)]
            else:
                log.warning(
                    f"[yellow]Cookie file not found, continuing without cookies: "
                    f"{cookie_file}[/yellow]"
                )

        cmd.append(ITEM_URL.format(item_id))
        return cmd

    async def start(
        self,
        item_id: str,
        title: Optional[str] = None,
        channel_name: Optional[str] = None,
    ) -> DownloadOutcome:
        """
        Downloads one item and persists its final state.

        Args:
            item_id: The catalogue item to download.
            title: Fallback title when the item is not in the catalogue.
            channel_name: Fallback channel name when the item is not in the
                catalogue.

        Returns:
            The outcome with the local path, if one could be determined.

        Raises:
            NotFoundError: The item is unknown and no fallback was supplied.
            ConfigurationError: No download path is configured.
            ProcessError: The downloader failed, was cancelled, or could not
                be started.
        """
        target = await self._db.get_download_target(item_id)
        if target is None:
            if not (title and channel_name):
                raise NotFoundError(f"Item not found in catalogue: {item_id}")
            target = DownloadTarget(item_id=item_id, title=title, channel_name=channel_name)
        if not self._config.download_path:
            raise ConfigurationError(
                "No download path configured. Set 'download_path' in config.ini."
            )

        target_dir = build_target_dir(
            self._config.download_path, target.channel_name, target.group_name
        )

        limiter = await self._current_limiter()
        async with limiter:
            await self._db.mark_download_started(item_id)
            self._emit(DownloadStarted(item_id))
            log.info(f"Downloading [cyan]{target.title}[/cyan] ({item_id})")
            try:
                path = await self._run(item_id, target_dir)
                await self._db.mark_download_completed(
                    item_id, path, datetime.now(timezone.utc)
                )
            except ProcessError as e:
                await self._fail(item_id, str(e), item_id in self._cancel_requested)
                raise
            except asyncio.CancelledError:
                await self._fail(item_id, "Download cancelled", cancelled=True)
                raise
            except Exception as e:
                log.debug(f"Download of {item_id} failed", exc_info=True)
                await self._fail(item_id, f"{type(e).__name__}: {e}", cancelled=False)
                raise ProcessError(f"Download of {item_id} failed: {e}") from e
            finally:
                async with self._jobs_lock:
                    self._jobs.pop(item_id, None)
                    self._cancel_requested.discard(item_id)

            self._emit(DownloadCompleted(item_id, path))
            log.info(f"[green]✓ Downloaded {target.title}[/green]")
            return DownloadOutcome(item_id=item_id, path=path)

    async def cancel(self, item_id: str) -> None:
        """
        Asks a running download to stop. The state change happens when the
        process exits.

        Raises:
            NotFoundError: No process is running for the item.
        """
        async with self._jobs_lock:
            pid = self._jobs.get(item_id)
            if pid is None:
                raise NotFoundError(f"No active download for item: {item_id}")
            self._cancel_requested.add(item_id)

        try:
            os.kill(pid, signal.SIGTERM)
            log.info(f"[yellow]Cancelling download {item_id} (pid {pid})[/yellow]")
        except ProcessLookupError:
            log.debug(f"Downloader for {item_id} already exited (pid {pid})")

    async def clear_history(self, item_id: Optional[str] = None) -> int:
        """Resets finished, failed and cancelled downloads back to idle."""
        cleared = await self._db.clear_download_history(item_id)
        log.debug(f"Cleared download history for {cleared} item(s)")
        return cleared

    async def _fail(self, item_id: str, error: str, cancelled: bool) -> None:
        error = (error or UNEXPECTED_FAILURE)[:ERROR_TEXT_CHARS]
        await self._db.mark_download_failed(item_id, error, cancelled=cancelled)
        self._emit(DownloadFailed(item_id, error, cancelled=cancelled))
        if cancelled:
            log.info(f"[yellow]Download {item_id} cancelled[/yellow]")
        else:
            log.error(f"[red]✗ Download {item_id} failed: {error}[/red]")

    async def _run(self, item_id: str, target_dir: Path) -> Optional[str]:
        try:
            create_dir(target_dir)
        except OSError as e:
            raise ProcessError(f"Cannot create download directory {target_dir}: {e}") from e

        cmd = self.build_command(item_id, build_output_template(target_dir))
        log.debug(f"Spawning: {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ProcessError(f"Failed to start downloader '{cmd[0]}': {e}") from e

        async with self._jobs_lock:
            self._jobs[item_id] = proc.pid

        queue: asyncio.Queue = asyncio.Queue()
        readers = [
            asyncio.create_task(_pump(proc.stdout, "stdout", queue)),
            asyncio.create_task(_pump(proc.stderr, "stderr", queue)),
        ]
        waiter = asyncio.create_task(proc.wait())
        getter: Optional[asyncio.Future] = None

        captured_path: Optional[str] = None
        stderr_text = ""
        failed = False
        last_progress = 0.0
        open_streams = len(readers)

        try:
            while open_streams:
                if getter is None:
                    getter = asyncio.ensure_future(queue.get())
                if waiter.done():
                    done, _ = await asyncio.wait({getter}, timeout=DRAIN_GRACE_SECONDS)
                    if not done:
                        log.debug(f"Output of {item_id} stalled after exit; stop draining")
                        break
                else:
                    done, _ = await asyncio.wait(
                        {getter, waiter}, return_when=asyncio.FIRST_COMPLETED
                    )
                    if getter not in done:
                        continue

                origin, line = getter.result()
                getter = None
                if line is None:
                    open_streams -= 1
                    continue

                if origin == "stderr":
                    log.debug(f"[{item_id}] {line}")
                    if len(stderr_text) < STDERR_BUFFER_CHARS:
                        stderr_text += line + "\n"
                    if "ERROR:" in line:
                        failed = True
                    continue

                event = classify_line(line)
                if isinstance(event, PATH_EVENTS):
                    captured_path = event.path
                elif isinstance(event, Progress):
                    now = time.monotonic()
                    if now - last_progress >= PROGRESS_INTERVAL:
                        last_progress = now
                        self._emit(
                            DownloadProgress(item_id, event.percent, event.speed, event.eta)
                        )

            returncode = await waiter
        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            for task in readers:
                if not task.done():
                    task.cancel()
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                waiter.cancel()

        if returncode != 0 or failed:
            log.debug(f"Downloader for {item_id} exited with code {returncode}")
            raise ProcessError(stderr_text.strip() or UNEXPECTED_FAILURE)

        if captured_path is None:
            found = find_downloaded_file(target_dir, item_id)
            captured_path = str(found) if found else None
            if captured_path is None:
                log.warning(
                    f"[yellow]Download {item_id} finished but its file was not found "
                    f"in {target_dir}[/yellow]"
                )
        return captured_path

    def _emit(self, event: Event) -> None:
        try:
            self._on_event(event)
        except Exception as e:
            log.warning(f"Progress callback failed for {type(event).__name__}: {e}")


async def _pump(
    stream: Optional[asyncio.StreamReader], origin: str, queue: asyncio.Queue
) -> None:
    """Forwards decoded lines from a process stream, then a None sentinel."""
    try:
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError as e:
                log.debug(f"Skipping oversized {origin} line: {e}")
                continue
            if not raw:
                break
            await queue.put((origin, raw.decode("utf-8", errors="replace").rstrip("\r\n")))
    finally:
        queue.put_nowait((origin, None))
