import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tubewatch.api.client import UploadListing
from tubewatch.api.credentials import CredentialPool
from tubewatch.core.sync_manager import SyncManager
from tubewatch.exceptions import (
    CredentialsExhaustedError,
    NoActiveCredentialError,
    NotFoundError,
    RemoteError,
)
from tubewatch.models.events import SyncComplete, SyncProgress
from tubewatch.models.remote import ChannelResource, VideoResource

NOW = datetime.now(timezone.utc)


def channel_data(channel_id, title=None):
    return {
        "id": channel_id,
        "snippet": {"title": title or channel_id, "thumbnails": {}},
        "statistics": {"viewCount": "1000", "subscriberCount": "10", "videoCount": "2"},
        "contentDetails": {"relatedPlaylists": {"uploads": f"UU{channel_id}"}},
    }


def video_data(video_id, channel_id, published, views=100):
    return {
        "id": video_id,
        "snippet": {
            "title": f"Video {video_id}",
            "publishedAt": published.isoformat(),
            "channelId": channel_id,
        },
        "statistics": {"viewCount": str(views)},
        "contentDetails": {"duration": "PT3M"},
    }


class FakeClient:
    """In-memory stand-in for CatalogueClient."""

    def __init__(self):
        self.channels = {}
        self.uploads = {}
        self.videos = {}
        self.hooks = {}
        self.calls = []

    def add(self, channel_id, *videos, handle=None):
        self.channels[channel_id] = channel_data(channel_id)
        if handle:
            self.channels[handle] = self.channels[channel_id]
        self.uploads[f"UU{channel_id}"] = []
        for video_id, published, views in videos:
            self.uploads[f"UU{channel_id}"].append((video_id, published))
            self.videos[video_id] = video_data(video_id, channel_id, published, views)

    async def resolve_channel(self, key, identifier):
        self.calls.append(("channels", key, identifier))
        if identifier in self.hooks:
            await self.hooks[identifier](key)
        if identifier not in self.channels:
            raise NotFoundError(f"Channel not found: {identifier}")
        return ChannelResource.model_validate(self.channels[identifier])

    async def list_upload_ids(self, key, playlist_id, published_after=None):
        self.calls.append(("playlistItems", key, playlist_id))
        return UploadListing(
            item_ids=[vid for vid, _ in self.uploads.get(playlist_id, [])], pages=1
        )

    async def fetch_item_details(self, key, item_ids):
        self.calls.append(("videos", key, len(item_ids)))
        return [VideoResource.model_validate(self.videos[i]) for i in item_ids], 1


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
async def pool(db):
    pool = CredentialPool(db)
    await pool.add_credential("k1")
    await pool.add_credential("k2")
    return pool


async def test_sync_one_stores_recent_items(db, pool, client, add_channel):
    await add_channel("UC1", "One")
    client.add(
        "UC1",
        ("new", NOW - timedelta(days=1), 500),
        ("old", NOW - timedelta(days=40), 900),
    )
    manager = SyncManager(db, client, pool)

    summary = await manager.sync_one("UC1", NOW - timedelta(days=7))

    assert (summary.channel_name, summary.items_synced, summary.quota_units) == ("One", 1, 3)
    assert await db.get_item("new") is not None
    assert await db.get_item("old") is None
    channel = await db.get_channel("UC1")
    assert (channel.subscriber_count, channel.avg_views) == (10, 500)


async def test_sync_one_accepts_naive_threshold(db, pool, client, add_channel):
    await add_channel("UC1", "One")
    client.add(
        "UC1",
        ("new", NOW - timedelta(days=1), 500),
        ("old", NOW - timedelta(days=40), 900),
    )
    naive_threshold = (NOW - timedelta(days=7)).replace(tzinfo=None)

    summary = await SyncManager(db, client, pool).sync_one("UC1", naive_threshold)

    assert summary.items_synced == 1
    assert await db.get_item("old") is None


async def test_sync_one_requires_known_channel(db, pool, client):
    with pytest.raises(NotFoundError):
        await SyncManager(db, client, pool).sync_one("UC_missing")


async def test_quota_error_rotates_to_next_key(db, pool, client, add_channel):
    await add_channel("UC1")
    client.add("UC1", ("v1", NOW, 10))

    async def reject_k1(key):
        if key == "k1":
            raise RemoteError(403, "quotaExceeded")

    client.hooks["UC1"] = reject_k1
    summary = await SyncManager(db, client, pool).sync_one("UC1")

    assert summary.items_synced == 1
    assert [c[1] for c in client.calls if c[0] == "channels"] == ["k1", "k2"]
    keys = {c.key: c for c in await pool.list_credentials()}
    assert sum(c.usage_today for c in keys.values()) == 3


async def test_non_quota_errors_do_not_rotate(db, pool, client, add_channel):
    await add_channel("UC1")

    async def server_error(key):
        raise RemoteError(500, "backend error")

    client.hooks["UC1"] = server_error
    with pytest.raises(RemoteError):
        await SyncManager(db, client, pool).sync_one("UC1")
    assert len(client.calls) == 1


async def test_every_key_exhausted(db, pool, client, add_channel):
    await add_channel("UC1")

    async def quota(key):
        raise RemoteError(403, "quotaExceeded")

    client.hooks["UC1"] = quota
    with pytest.raises(CredentialsExhaustedError):
        await SyncManager(db, client, pool).sync_one("UC1")

    credentials = await pool.list_credentials()
    assert all(c.is_quota_exhausted for c in credentials)
    assert credentials[0].last_error.startswith("YouTube API error 403")


async def test_sync_all_requires_a_key(db, client, add_channel):
    await add_channel("UC1")
    events = []
    manager = SyncManager(db, client, CredentialPool(db), on_event=events.append)
    with pytest.raises(NoActiveCredentialError):
        await manager.sync_all()
    assert client.calls == []


async def test_sync_all_reports_each_channel(db, pool, client, add_channel):
    for channel_id in ("UC1", "UC2"):
        await add_channel(channel_id)
        client.add(channel_id, (f"{channel_id}-v", NOW, 10))
    events = []
    manager = SyncManager(db, client, pool, on_event=events.append)

    report = await manager.sync_all(["UC1", "UC2", "UC_missing"])

    assert (report.total, report.succeeded, report.failed, report.skipped) == (3, 2, 1, 0)
    assert "UC_missing" in report.errors
    assert report.items_synced == 2
    progress = [e for e in events if isinstance(e, SyncProgress)]
    assert sorted(e.current for e in progress) == [1, 2, 3]
    assert {e.status for e in progress} == {"success", "error"}
    assert events[-1] == SyncComplete(total=3, succeeded=2, failed=1, skipped=0)


async def test_breaker_skips_undispatched_channels(db, pool, client, add_channel):
    for channel_id in ("UC1", "UC2", "UC3"):
        await add_channel(channel_id, name=channel_id)
        client.add(channel_id, (f"{channel_id}-v", NOW, 10))

    async def quota(key):
        raise RemoteError(403, "quotaExceeded")

    client.hooks["UC1"] = quota
    events = []
    manager = SyncManager(db, client, pool, on_event=events.append, max_concurrent=1)

    report = await manager.sync_all(["UC1", "UC2", "UC3"])

    assert (report.failed, report.skipped, report.succeeded) == (1, 2, 0)
    assert "quota" in report.breaker_reason.lower()
    assert [c[2] for c in client.calls if c[0] == "channels"] == ["UC1", "UC1"]
    skipped = [e for e in events if isinstance(e, SyncProgress) and e.status == "skipped"]
    assert [e.channel_id for e in skipped] == ["UC2", "UC3"]
    assert all(
        e.error.startswith("Skipped: circuit breaker 'youtube-api' is open") for e in skipped
    )
    assert isinstance(events[-1], SyncComplete)


async def test_breaker_lets_started_channels_finish(db, pool, client, add_channel):
    for channel_id in ("UC1", "UC2", "UC3"):
        await add_channel(channel_id, name=channel_id)
        client.add(channel_id, (f"{channel_id}-v", NOW, 10))

    uc2_started = asyncio.Event()
    release_uc2 = asyncio.Event()

    async def quota_after_uc2_starts(key):
        await uc2_started.wait()
        raise RemoteError(403, "quotaExceeded")

    async def slow(key):
        uc2_started.set()
        await release_uc2.wait()

    client.hooks["UC1"] = quota_after_uc2_starts
    client.hooks["UC2"] = slow

    events = []

    def on_event(event):
        events.append(event)
        if isinstance(event, SyncProgress) and event.channel_id == "UC1":
            release_uc2.set()

    manager = SyncManager(db, client, pool, on_event=on_event, max_concurrent=2)
    report = await asyncio.wait_for(manager.sync_all(["UC1", "UC2", "UC3"]), timeout=5)

    statuses = {e.channel_id: e.status for e in events if isinstance(e, SyncProgress)}
    assert statuses == {"UC1": "error", "UC2": "success", "UC3": "skipped"}
    assert (report.succeeded, report.failed, report.skipped) == (1, 1, 1)


async def test_add_channel_inserts_and_syncs(db, pool, client):
    client.add(
        "UC9",
        ("recent", NOW - timedelta(days=2), 70),
        ("ancient", NOW - timedelta(days=90), 10),
        handle="@nine",
    )
    group_id = await db.add_group("Tech")
    manager = SyncManager(db, client, pool)

    summary = await manager.add_channel("@nine", group_id)

    channel = await db.get_channel("UC9")
    assert channel.group_id == group_id
    assert channel.url == "https://www.youtube.com/channel/UC9"
    assert summary.items_synced == 1
    assert await db.get_item("recent") is not None
    assert await db.get_item("ancient") is None
