"""
Structured JSON-lines event log for sync and download runs.

Each entry carries a timestamp, level, event name and the session context,
so a run can be analysed after the fact with any JSON tooling.
"""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from tubewatch.models.events import (
    DownloadCompleted,
    DownloadFailed,
    DownloadStarted,
    Event,
    SyncComplete,
    SyncProgress,
)

log = logging.getLogger(__name__)


class StructuredLogger:
    """
    Logger that mirrors events to the console logger and, optionally, to a
    `.jsonl` file in `log_dir`.

    Usage:
        logger = StructuredLogger("tubewatch", log_dir=config_dir / "logs")
        logger.info("channel_synced", channel_id="UC123", items=12)
    """

    def __init__(
        self,
        name: str,
        log_dir: Optional[Path] = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console
        self.json_path: Optional[Path] = None

        self._logger = logging.getLogger(name)

        self._json_file = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_path = log_dir / f"{name}_{timestamp}.jsonl"
            self._json_file = open(self.json_path, "a", encoding="utf-8")  # noqa: SIM115

        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
            "start_time": datetime.now().isoformat(),
        }

    def set_session_context(self, **kwargs: Any) -> None:
        """Set session-level context that appears in all log entries."""
        self._session_context.update(kwargs)

    def _format_message(self, event: str, **context: Any) -> str:
        parts = [f"[{event}]"]
        parts.extend(f"{key}={value}" for key, value in context.items())
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context: Any) -> None:
        if not self._json_file or self._json_file.closed:
            return

        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }
        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except (OSError, ValueError) as e:
            log.warning(f"JSON event logging failed: {e}")

    def _log(self, level: int, event: str, **context: Any) -> None:
        if self.enable_console:
            # Context values may contain brackets; keep them out of Rich markup.
            self._logger.log(
                level, self._format_message(event, **context), extra={"markup": False}
            )
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context: Any) -> None:
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context: Any) -> None:
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context: Any) -> None:
        self._log(logging.WARNING, event, **context)

    def error(self, event: str, **context: Any) -> None:
        self._log(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close the JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class SyncLogger:
    """Specialized logger for sync events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def run_started(self, total_channels: int, published_after: Optional[str]):
        self.logger.info(
            "sync_started",
            total_channels=total_channels,
            published_after=published_after,
        )

    def channel_finished(
        self, channel_id: str, channel: str, status: str, error: Optional[str] = None
    ):
        """Log one channel's sync outcome."""
        if status == "error":
            self.logger.error(
                "channel_sync_failed", channel_id=channel_id, channel=channel, error=error
            )
        elif status == "skipped":
            self.logger.warning(
                "channel_sync_skipped", channel_id=channel_id, channel=channel, reason=error
            )
        else:
            self.logger.debug("channel_synced", channel_id=channel_id, channel=channel)

    def run_completed(self, total: int, succeeded: int, failed: int, skipped: int):
        self.logger.info(
            "sync_completed",
            total=total,
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
        )


class DownloadLogger:
    """Specialized logger for download events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def item_started(self, item_id: str):
        self.logger.info("item_download_started", item_id=item_id)

    def item_completed(self, item_id: str, path: Optional[str], duration_s: float):
        self.logger.info(
            "item_download_completed",
            item_id=item_id,
            path=path,
            duration_s=round(duration_s, 2),
        )

    def item_failed(self, item_id: str, error: str, cancelled: bool):
        if cancelled:
            self.logger.warning("item_download_cancelled", item_id=item_id, error=error)
        else:
            self.logger.error("item_download_failed", item_id=item_id, error=error)


class EventRecorder:
    """
    Progress-event sink that forwards terminal events to the structured
    loggers. Progress ticks are not recorded.
    """

    def __init__(self, sync_logger: SyncLogger, download_logger: DownloadLogger):
        self.sync_logger = sync_logger
        self.download_logger = download_logger
        self._started: dict[str, float] = {}

    def __call__(self, event: Event) -> None:
        if isinstance(event, SyncProgress):
            self.sync_logger.channel_finished(
                event.channel_id, event.channel, event.status, event.error
            )
        elif isinstance(event, SyncComplete):
            self.sync_logger.run_completed(
                event.total, event.succeeded, event.failed, event.skipped
            )
        elif isinstance(event, DownloadStarted):
            self._started[event.item_id] = time.monotonic()
            self.download_logger.item_started(event.item_id)
        elif isinstance(event, DownloadCompleted):
            started = self._started.pop(event.item_id, time.monotonic())
            self.download_logger.item_completed(
                event.item_id, event.path, time.monotonic() - started
            )
        elif isinstance(event, DownloadFailed):
            self._started.pop(event.item_id, None)
            self.download_logger.item_failed(event.item_id, event.error, event.cancelled)


def create_structured_logger(
    log_dir: Optional[Path] = None, enable_json: bool = False
) -> tuple[StructuredLogger, SyncLogger, DownloadLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, sync_logger, download_logger)
    """
    base = StructuredLogger(
        "tubewatch.events", log_dir=log_dir, enable_json=enable_json
    )
    return base, SyncLogger(base), DownloadLogger(base)
