"""
Async client for the YouTube Data API v3 read endpoints used by the catalogue.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from pydantic import ValidationError

from tubewatch.exceptions import DecodeError, NotFoundError, RemoteError
from tubewatch.models.remote import (
    ChannelListResponse,
    ChannelResource,
    PlaylistItemListResponse,
    VideoListResponse,
    VideoResource,
)

log = logging.getLogger(__name__)

PAGE_SIZE = 50
UPLOAD_LIST_CAP = 500


@dataclass
class UploadListing:
    """Item ids from an uploads playlist plus the number of pages requested."""

    item_ids: List[str] = field(default_factory=list)
    pages: int = 0


class CatalogueClient:
    """
    Thin async client for the `channels`, `playlistItems` and `videos`
    endpoints.

    Every call takes the API key to use; key selection and rotation belong to
    the caller. The client never retries.
    """

    BASE_URL = "https://www.googleapis.com/youtube/v3/"

    def __init__(self, base_url: Optional[str] = None, max_connections: int = 10):
        self.base_url = base_url or self.BASE_URL
        if not self.base_url.endswith("/"):
            self.base_url += "/"
        self.max_connections = max_connections
        self._session: Optional[aiohttp.ClientSession] = None

    async def _initialize_session(self) -> None:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_connections * 2,
                limit_per_host=self.max_connections,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"Accept-Encoding": "gzip, deflate"},
                timeout=aiohttp.ClientTimeout(total=60, connect=15, sock_read=30),
            )

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "CatalogueClient":
        await self._initialize_session()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def api_call(self, endpoint: str, key: str, **params: Any) -> Dict[str, Any]:
        """
        Performs one GET request and returns the decoded JSON body.

        Raises:
            RemoteError: Non-2xx status, or status 0 for transport failures.
            DecodeError: The body is not valid JSON.
        """
        await self._initialize_session()
        query = {k: v for k, v in params.items() if v is not None}
        query["key"] = key

        start_time = time.monotonic()
        try:
            async with self._session.get(self.base_url + endpoint, params=query) as r:
                body = await r.text()
                duration_ms = (time.monotonic() - start_time) * 1000
                log.debug(f"GET {endpoint} -> {r.status} in {duration_ms:.0f}ms")
                if r.status < 200 or r.status >= 300:
                    raise RemoteError(r.status, body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.debug(f"API call to {endpoint} failed: {e!r}")
            raise RemoteError(0, f"{type(e).__name__}: {e}") from e

        try:
            return json.loads(body)
        except ValueError as e:
            raise DecodeError(f"Invalid JSON from {endpoint}: {e}") from e

    async def resolve_channel(self, key: str, identifier: str) -> ChannelResource:
        """
        Looks up a channel by '@handle' or by channel id.

        Raises:
            NotFoundError: The API returned no channel.
        """
        identifier = identifier.strip()
        params: Dict[str, Any] = {"part": "snippet,statistics,contentDetails"}
        if identifier.startswith("@"):
            params["forHandle"] = identifier
        else:
            params["id"] = identifier

        data = await self.api_call("channels", key, **params)
        response = _parse(ChannelListResponse, data, "channels")
        if not response.items:
            raise NotFoundError(f"Channel not found: {identifier}")
        return response.items[0]

    async def list_upload_ids(
        self,
        key: str,
        playlist_id: str,
        published_after: Optional[datetime] = None,
    ) -> UploadListing:
        """
        Walks an uploads playlist newest-first and collects item ids.

        Stops at the first item published before `published_after`, when there
        is no next page, or once the safety cap is reached.
        """
        if published_after is not None and published_after.tzinfo is None:
            published_after = published_after.replace(tzinfo=timezone.utc)

        listing = UploadListing()
        page_token: Optional[str] = None
        while True:
            data = await self.api_call(
                "playlistItems",
                key,
                part="snippet",
                playlistId=playlist_id,
                maxResults=PAGE_SIZE,
                pageToken=page_token,
            )
            listing.pages += 1
            response = _parse(PlaylistItemListResponse, data, "playlistItems")

            reached_cutoff = False
            for item in response.items or []:
                published = item.snippet.published_at
                if published_after and published and published < published_after:
                    reached_cutoff = True
                    break
                if item.snippet.resource_id.video_id:
                    listing.item_ids.append(item.snippet.resource_id.video_id)
                if len(listing.item_ids) >= UPLOAD_LIST_CAP:
                    reached_cutoff = True
                    break

            page_token = response.next_page_token
            if reached_cutoff or not page_token:
                return listing

    async def fetch_item_details(
        self, key: str, item_ids: Sequence[str]
    ) -> tuple[List[VideoResource], int]:
        """
        Fetches snippet, statistics and duration for items in batches of 50.

        Returns:
            The resources and the number of requests made.
        """
        resources: List[VideoResource] = []
        requests = 0
        for start in range(0, len(item_ids), PAGE_SIZE):
            batch = item_ids[start : start + PAGE_SIZE]
            data = await self.api_call(
                "videos",
                key,
                part="snippet,statistics,contentDetails",
                id=",".join(batch),
            )
            requests += 1
            response = _parse(VideoListResponse, data, "videos")
            resources.extend(response.items or [])
        return resources, requests


def _parse(model: Any, data: Any, endpoint: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"Unexpected response shape from {endpoint}: {e}") from e
