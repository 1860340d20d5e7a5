"""
Plain dataclasses for rows read from the catalogue database.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Channel:
    id: str
    name: str
    url: str = ""
    thumbnail: Optional[str] = None
    subscriber_count: int = 0
    view_count: int = 0
    video_count: int = 0
    avg_views: float = 0.0
    std_dev: float = 0.0
    last_upload_at: Optional[datetime] = None
    group_id: Optional[int] = None
    is_favorite: bool = False
    is_pinned: bool = False


@dataclass
class Item:
    id: str
    channel_id: str
    title: str
    published_at: datetime
    view_count: int = 0
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    is_short: bool = False
    url: str = ""
    thumbnail: Optional[str] = None
    download_status: str = "idle"
    download_error: Optional[str] = None
    is_downloaded: bool = False
    local_path: Optional[str] = None
    downloaded_at: Optional[datetime] = None


@dataclass
class Credential:
    id: int
    key: str
    name: Optional[str] = None
    is_active: bool = True
    usage_today: int = 0
    last_used: Optional[datetime] = None
    is_quota_exhausted: bool = False
    last_error: Optional[str] = None


@dataclass
class RankCandidate:
    """An item joined with its channel's baseline, ready for scoring."""

    item_id: str
    title: str
    channel_id: str
    channel_name: str
    published_at: datetime
    view_count: int
    like_count: Optional[int]
    comment_count: Optional[int]
    is_short: bool
    channel_avg: float
    channel_std_dev: float


@dataclass
class RankedItem:
    candidate: RankCandidate
    vph: float
    viral_ratio: float
    z_score: float
    engagement_rate: float

    @property
    def views(self) -> float:
        return float(self.candidate.view_count)


@dataclass
class DownloadTarget:
    """What the supervisor needs to know to place a download on disk."""

    item_id: str
    title: str
    channel_name: str
    group_name: Optional[str] = None
