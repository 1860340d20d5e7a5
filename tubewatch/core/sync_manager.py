"""
The orchestrator that refreshes channels and their items from the remote API.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from tubewatch.api.client import PAGE_SIZE, CatalogueClient
from tubewatch.api.credentials import CredentialPool
from tubewatch.exceptions import (
    CircuitBreakerError,
    NotFoundError,
    RemoteError,
    is_quota_error,
)
from tubewatch.models.events import (
    Event,
    EventCallback,
    SyncComplete,
    SyncProgress,
    ignore_event,
)
from tubewatch.models.records import Channel
from tubewatch.models.stats import SyncReport, SyncSummary
from tubewatch.storage.database import CatalogueDB
from tubewatch.utils.circuit_breaker import CircuitBreaker

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SYNC_CONCURRENCY = 5
INITIAL_SYNC_DAYS = 30
CHANNEL_URL = "https://www.youtube.com/channel/{}"


class SyncManager:
    """
    Synchronizes channels with bounded concurrency.

    Every remote call is made with a key from the credential pool. A quota
    failure marks the key exhausted and the same call is retried with the next
    key. Once a run hits a systemic quota failure, its circuit breaker opens
    and channels that have not started yet are skipped.
    """

    def __init__(
        self,
        db: CatalogueDB,
        client: CatalogueClient,
        pool: CredentialPool,
        on_event: EventCallback = ignore_event,
        max_concurrent: int = DEFAULT_SYNC_CONCURRENCY,
    ):
        self.db = db
        self.client = client
        self.pool = pool
        self._on_event = on_event
        self.max_concurrent = max(1, max_concurrent)

    async def _with_credential(
        self,
        operation: Callable[[str], Awaitable[T]],
        units_of: Callable[[T], int],
    ) -> tuple[T, int]:
        """
        Runs `operation(key)` with rotating keys and records its quota cost.

        Raises:
            CredentialsExhaustedError: Every active key failed with a quota error.
        """
        tried: set[str] = set()
        while True:
            key = await self.pool.acquire(tried)
            try:
                result = await operation(key)
            except RemoteError as e:
                if not e.is_quota_error:
                    raise
                await self.pool.mark_exhausted(key, str(e))
                tried.add(key)
                log.debug(f"Rotating API key after quota error ({len(tried)} tried)")
                continue
            units = units_of(result)
            await self.pool.record_usage(key, units)
            return result, units

    async def sync_one(
        self, channel_id: str, published_after: Optional[datetime] = None
    ) -> SyncSummary:
        """
        Refreshes one channel: counters, recent items, and its baseline.

        Raises:
            NotFoundError: The channel is not in the catalogue or no longer
                exists remotely.
        """
        if published_after is not None and published_after.tzinfo is None:
            published_after = published_after.replace(tzinfo=timezone.utc)
        channel = await self.db.get_channel(channel_id)
        if channel is None:
            raise NotFoundError(f"Channel not in catalogue: {channel_id}")

        resource, quota = await self._with_credential(
            lambda key: self.client.resolve_channel(key, channel_id), lambda _: 1
        )

        item_ids: list[str] = []
        playlist_id = resource.uploads_playlist_id
        if playlist_id:
            listing, units = await self._with_credential(
                lambda key: self.client.list_upload_ids(key, playlist_id, published_after),
                lambda result: result.pages,
            )
            item_ids = listing.item_ids
            quota += units
        else:
            log.warning(f"[yellow]Channel {channel.name} has no uploads playlist[/yellow]")

        rows = []
        for start in range(0, len(item_ids), PAGE_SIZE):
            batch = item_ids[start : start + PAGE_SIZE]
            (resources, _), units = await self._with_credential(
                lambda key, batch=batch: self.client.fetch_item_details(key, batch),
                lambda result: result[1],
            )
            quota += units
            rows.extend(
                resource.to_row()
                for resource in resources
                if published_after is None
                or resource.snippet.published_at >= published_after
            )

        synced = await self.db.apply_sync(channel_id, resource.counters(), rows)
        log.debug(f"Synced {synced} item(s) for {channel.name} using {quota} quota unit(s)")
        return SyncSummary(
            channel_id=channel_id,
            channel_name=channel.name,
            items_synced=synced,
            quota_units=quota,
        )

    async def sync_all(
        self,
        channel_ids: Optional[Iterable[str]] = None,
        published_after: Optional[datetime] = None,
        group_id: Optional[int] = None,
    ) -> SyncReport:
        """
        Synchronizes many channels, at most `max_concurrent` at a time.

        Args:
            channel_ids: Channels to sync. Defaults to every channel, or to the
                channels of `group_id` when given (-1 for uncategorized).
            published_after: Only items published after this moment are stored.
            group_id: Restricts the default selection to one group.

        Raises:
            NoActiveCredentialError: No API key is configured.
        """
        await self.pool.ensure_configured()
        channels = await self._select_channels(channel_ids, group_id)

        breaker = CircuitBreaker("youtube-api")
        report = SyncReport(total=len(channels))
        semaphore = asyncio.Semaphore(self.max_concurrent)
        finished = 0

        async def _worker(channel: Channel) -> None:
            nonlocal finished
            async with semaphore:
                try:
                    breaker.check()
                except CircuitBreakerError as e:
                    report.record_skip()
                    finished += 1
                    self._emit(
                        SyncProgress(
                            finished, report.total, channel.id, channel.name,
                            "skipped", str(e),
                        )
                    )
                    return
                try:
                    summary = await self.sync_one(channel.id, published_after)
                except Exception as e:
                    if is_quota_error(e):
                        breaker.trip(str(e))
                    log.debug(f"Sync of {channel.id} failed", exc_info=True)
                    log.error(f"[red]✗ {channel.name}: {e}[/red]")
                    report.record_failure(channel.id, str(e))
                    finished += 1
                    self._emit(
                        SyncProgress(
                            finished, report.total, channel.id, channel.name,
                            "error", str(e),
                        )
                    )
                else:
                    report.record_success(summary)
                    finished += 1
                    self._emit(
                        SyncProgress(
                            finished, report.total, channel.id, channel.name, "success"
                        )
                    )

        try:
            await asyncio.gather(*(_worker(channel) for channel in channels))
        finally:
            report.breaker_reason = breaker.reason
            self._emit(
                SyncComplete(
                    total=report.total,
                    succeeded=report.succeeded,
                    failed=report.failed,
                    skipped=report.skipped,
                )
            )
        return report

    async def add_channel(
        self, identifier: str, group_id: Optional[int] = None
    ) -> SyncSummary:
        """
        Resolves a channel by '@handle' or id, adds it to the catalogue, and
        runs an initial sync of the last 30 days.
        """
        await self.pool.ensure_configured()
        resource, _ = await self._with_credential(
            lambda key: self.client.resolve_channel(key, identifier), lambda _: 1
        )
        counters = resource.counters()
        channel = Channel(
            id=resource.id,
            name=resource.snippet.title,
            url=CHANNEL_URL.format(resource.id),
            thumbnail=resource.snippet.thumbnails.best_url(),
            subscriber_count=counters["subscriber_count"],
            view_count=counters["view_count"],
            video_count=counters["video_count"],
            group_id=group_id,
        )
        if await self.db.add_channel(channel):
            log.info(f"[green]✓ Added channel {channel.name}[/green]")
        else:
            log.info(f"Channel {channel.name} is already tracked")

        since = datetime.now(timezone.utc) - timedelta(days=INITIAL_SYNC_DAYS)
        return await self.sync_one(channel.id, since)

    async def _select_channels(
        self, channel_ids: Optional[Iterable[str]], group_id: Optional[int]
    ) -> list[Channel]:
        if channel_ids is None:
            return await self.db.list_channels(group_id)
        channels = []
        for channel_id in dict.fromkeys(channel_ids):
            channel = await self.db.get_channel(channel_id)
            # Unknown ids still get a slot so the failure is reported per channel.
            channels.append(channel or Channel(id=channel_id, name=channel_id))
        return channels

    def _emit(self, event: Event) -> None:
        try:
            self._on_event(event)
        except Exception as e:
            log.warning(f"Progress callback failed for {type(event).__name__}: {e}")
