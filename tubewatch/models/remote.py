"""
Pydantic models for the subset of YouTube Data API v3 resources that the
catalogue client reads.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from tubewatch.utils.formatting import (
    is_short_duration,
    parse_count,
    parse_iso_duration,
)


class _Resource(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Thumbnail(_Resource):
    url: str


class Thumbnails(_Resource):
    default: Optional[Thumbnail] = None
    medium: Optional[Thumbnail] = None
    high: Optional[Thumbnail] = None

    def best_url(self) -> Optional[str]:
        for thumb in (self.high, self.medium, self.default):
            if thumb:
                return thumb.url
        return None


class ChannelSnippet(_Resource):
    title: str
    description: str = ""
    thumbnails: Thumbnails = Field(default_factory=Thumbnails)


class ChannelStatistics(_Resource):
    view_count: Optional[str] = Field(default=None, alias="viewCount")
    subscriber_count: Optional[str] = Field(default=None, alias="subscriberCount")
    video_count: Optional[str] = Field(default=None, alias="videoCount")


class RelatedPlaylists(_Resource):
    uploads: str


class ChannelContentDetails(_Resource):
    related_playlists: RelatedPlaylists = Field(alias="relatedPlaylists")


class ChannelResource(_Resource):
    id: str
    snippet: ChannelSnippet
    statistics: Optional[ChannelStatistics] = None
    content_details: Optional[ChannelContentDetails] = Field(
        default=None, alias="contentDetails"
    )

    @property
    def uploads_playlist_id(self) -> Optional[str]:
        if self.content_details:
            return self.content_details.related_playlists.uploads
        return None

    def counters(self) -> dict[str, int]:
        """Authoritative subscriber/view/video counters (0 when hidden)."""
        stats = self.statistics or ChannelStatistics()
        return {
            "subscriber_count": parse_count(stats.subscriber_count) or 0,
            "view_count": parse_count(stats.view_count) or 0,
            "video_count": parse_count(stats.video_count) or 0,
        }


class ChannelListResponse(_Resource):
    items: Optional[list[ChannelResource]] = None


class ResourceId(_Resource):
    video_id: Optional[str] = Field(default=None, alias="videoId")


class PlaylistItemSnippet(_Resource):
    resource_id: ResourceId = Field(alias="resourceId")
    published_at: Optional[datetime] = Field(default=None, alias="publishedAt")


class PlaylistItemResource(_Resource):
    snippet: PlaylistItemSnippet


class PlaylistItemListResponse(_Resource):
    items: Optional[list[PlaylistItemResource]] = None
    next_page_token: Optional[str] = Field(default=None, alias="nextPageToken")


class VideoSnippet(_Resource):
    title: str
    published_at: datetime = Field(alias="publishedAt")
    channel_id: str = Field(alias="channelId")
    thumbnails: Thumbnails = Field(default_factory=Thumbnails)


class VideoStatistics(_Resource):
    view_count: Optional[str] = Field(default=None, alias="viewCount")
    like_count: Optional[str] = Field(default=None, alias="likeCount")
    comment_count: Optional[str] = Field(default=None, alias="commentCount")


class VideoContentDetails(_Resource):
    duration: str = "PT0S"


class VideoResource(_Resource):
    id: str
    snippet: VideoSnippet
    statistics: Optional[VideoStatistics] = None
    content_details: Optional[VideoContentDetails] = Field(
        default=None, alias="contentDetails"
    )

    @property
    def duration_seconds(self) -> int:
        duration = self.content_details.duration if self.content_details else "PT0S"
        return parse_iso_duration(duration)

    @property
    def is_short(self) -> bool:
        return is_short_duration(self.duration_seconds)

    def to_row(self) -> dict:
        """Flattens the resource into the columns the catalogue upserts."""
        stats = self.statistics or VideoStatistics()
        return {
            "id": self.id,
            "channel_id": self.snippet.channel_id,
            "title": self.snippet.title,
            "url": f"https://www.youtube.com/watch?v={self.id}",
            "thumbnail": self.snippet.thumbnails.best_url(),
            "published_at": self.snippet.published_at,
            "view_count": parse_count(stats.view_count) or 0,
            "like_count": parse_count(stats.like_count),
            "comment_count": parse_count(stats.comment_count),
            "is_short": self.is_short,
        }


class VideoListResponse(_Resource):
    items: Optional[list[VideoResource]] = None
