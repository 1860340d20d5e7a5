"""
Progress events emitted by the sync orchestrator and the download supervisor.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Union


@dataclass(frozen=True)
class SyncProgress:
    """One channel finished (or was skipped) during a sync run."""

    current: int
    total: int
    channel_id: str
    channel: str
    status: str  # "success" | "error" | "skipped"
    error: Optional[str] = None


@dataclass(frozen=True)
class SyncComplete:
    """All dispatched sync work has settled."""

    total: int
    succeeded: int
    failed: int
    skipped: int


@dataclass(frozen=True)
class DownloadStarted:
    item_id: str


@dataclass(frozen=True)
class DownloadProgress:
    item_id: str
    percent: float
    speed: str = ""
    eta: str = ""


@dataclass(frozen=True)
class DownloadCompleted:
    item_id: str
    path: Optional[str]


@dataclass(frozen=True)
class DownloadFailed:
    item_id: str
    error: str
    cancelled: bool = False


Event = Union[
    SyncProgress,
    SyncComplete,
    DownloadStarted,
    DownloadProgress,
    DownloadCompleted,
    DownloadFailed,
]
EventCallback = Callable[[Event], None]


def ignore_event(event: Event) -> None:
    """Default sink for callers that do not observe progress."""
