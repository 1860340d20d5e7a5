from datetime import datetime, timedelta, timezone

from tubewatch.models.records import Channel

PUBLISHED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


async def test_apply_sync_updates_counters_and_items(db, add_channel, make_row):
    channel_id = await add_channel()
    counters = {"subscriber_count": 10, "view_count": 2000, "video_count": 3}
    stored = await db.apply_sync(
        channel_id, counters, [make_row("v1", PUBLISHED, views=100, likes=5)]
    )
    assert stored == 1

    channel = await db.get_channel(channel_id)
    assert (channel.subscriber_count, channel.view_count, channel.video_count) == (10, 2000, 3)
    item = await db.get_item("v1")
    assert (item.view_count, item.like_count, item.comment_count) == (100, 5, None)
    assert item.channel_id == channel_id


async def test_upsert_overwrites_counters_but_not_download_fields(db, add_channel, make_row):
    channel_id = await add_channel()
    await db.apply_sync(channel_id, None, [make_row("v1", PUBLISHED, views=100, is_short=True)])
    finished = datetime(2024, 5, 2, tzinfo=timezone.utc)
    await db.mark_download_completed("v1", "/videos/v1.mp4", finished)

    later = PUBLISHED + timedelta(days=3)
    await db.apply_sync(
        channel_id,
        None,
        [make_row("v1", later, views=900, likes=7, comments=2, title="Renamed", is_short=False)],
    )

    item = await db.get_item("v1")
    assert item.title == "Renamed"
    assert (item.view_count, item.like_count, item.comment_count) == (900, 7, 2)
    assert item.published_at == PUBLISHED
    assert item.is_short is True
    assert item.download_status == "completed"
    assert item.local_path == "/videos/v1.mp4"
    assert item.downloaded_at == finished


async def test_bad_rows_are_skipped_not_fatal(db, add_channel, make_row):
    channel_id = await add_channel()
    rows = [make_row("ok", PUBLISHED, views=10), make_row("bad", PUBLISHED, title=None)]
    assert await db.apply_sync(channel_id, None, rows) == 1
    assert await db.get_item("ok") is not None
    assert await db.get_item("bad") is None


async def test_clear_history_keeps_download_results(db, add_channel, make_row):
    channel_id = await add_channel()
    await db.apply_sync(
        channel_id,
        None,
        [make_row(v, PUBLISHED) for v in ("done", "broken", "stopped", "busy", "fresh")],
    )
    await db.mark_download_completed("done", "/v/done.mp4", PUBLISHED)
    await db.mark_download_failed("broken", "ERROR: boom")
    await db.mark_download_failed("stopped", "killed", cancelled=True)
    await db.mark_download_started("busy")

    assert await db.clear_download_history() == 3

    done = await db.get_item("done")
    assert done.download_status == "idle"
    assert done.is_downloaded and done.local_path == "/v/done.mp4"
    assert done.downloaded_at == PUBLISHED
    broken = await db.get_item("broken")
    assert (broken.download_status, broken.download_error) == ("idle", None)
    assert (await db.get_item("stopped")).download_status == "idle"
    assert (await db.get_item("busy")).download_status == "downloading"
    assert (await db.get_item("fresh")).download_status == "idle"


async def test_clear_history_for_one_item(db, add_channel, make_row):
    channel_id = await add_channel()
    await db.apply_sync(channel_id, None, [make_row("a", PUBLISHED), make_row("b", PUBLISHED)])
    await db.mark_download_failed("a", "x")
    await db.mark_download_failed("b", "y")

    assert await db.clear_download_history("a") == 1
    assert (await db.get_item("a")).download_status == "idle"
    assert (await db.get_item("b")).download_status == "error"


async def test_ranking_candidates_filters(db, add_channel, make_row):
    group_id = await db.add_group("Tech")
    await add_channel("UC_tech", "Tech Channel", group_id=group_id)
    await add_channel("UC_free", "Loose Channel")
    await db.apply_sync(
        "UC_tech",
        None,
        [
            make_row("t_new", PUBLISHED, views=10),
            make_row("t_short", PUBLISHED, views=20, is_short=True),
            make_row("t_old", PUBLISHED - timedelta(days=30), views=30),
        ],
    )
    await db.apply_sync("UC_free", None, [make_row("f_new", PUBLISHED, views=40)])
    since = PUBLISHED - timedelta(days=7)

    ids = {c.item_id for c in await db.ranking_candidates(since)}
    assert ids == {"t_new", "t_short", "f_new"}
    ids = {c.item_id for c in await db.ranking_candidates(since, group_id=group_id, kind="video")}
    assert ids == {"t_new"}
    ids = {c.item_id for c in await db.ranking_candidates(since, group_id=-1)}
    assert ids == {"f_new"}
    ids = {c.item_id for c in await db.ranking_candidates(None, kind="short")}
    assert ids == {"t_short"}

    [candidate] = await db.ranking_candidates(since, group_id=-1)
    assert candidate.channel_name == "Loose Channel"
    assert candidate.channel_avg == 40


async def test_group_and_channel_stats(db, add_channel, make_row):
    group_id = await db.add_group("Tech")
    await add_channel("UC_tech", "Tech Channel", group_id=group_id)
    await add_channel("UC_free", "Loose Channel")
    await db.apply_sync(
        "UC_tech", None, [make_row("a", PUBLISHED, views=10), make_row("b", PUBLISHED, views=30)]
    )
    await db.apply_sync("UC_free", None, [make_row("c", PUBLISHED, views=100)])

    groups = await db.group_stats(None)
    assert [(g["name"], g["total_views"], g["video_count"]) for g in groups] == [
        ("Uncategorized", 100, 1),
        ("Tech", 40, 2),
    ]
    channels = await db.channel_stats(None, group_id=group_id)
    assert [(c["id"], c["avg_views"]) for c in channels] == [("UC_tech", 20.0)]


async def test_groups_and_channels(db):
    group_id = await db.add_group("News")
    assert await db.add_group("News") == group_id
    assert await db.find_group("News") == group_id
    assert await db.find_group("Sports") is None

    assert await db.add_channel(Channel(id="UC1", name="Beta", group_id=group_id))
    assert not await db.add_channel(Channel(id="UC1", name="Beta again"))
    assert await db.add_channel(Channel(id="UC2", name="Alpha"))

    assert [c.name for c in await db.list_channels()] == ["Alpha", "Beta"]
    assert [c.id for c in await db.list_channels(group_id)] == ["UC1"]
    assert [c.id for c in await db.list_channels(-1)] == ["UC2"]


async def test_download_target_includes_group(db, add_channel, make_row):
    group_id = await db.add_group("Music")
    await add_channel("UC1", "Band", group_id=group_id)
    await db.apply_sync("UC1", None, [make_row("v1", PUBLISHED, title="Live Set")])

    target = await db.get_download_target("v1")
    assert (target.title, target.channel_name, target.group_name) == ("Live Set", "Band", "Music")
    assert await db.get_download_target("missing") is None
