from datetime import datetime, timezone

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from tubewatch.api.client import UPLOAD_LIST_CAP, CatalogueClient
from tubewatch.exceptions import DecodeError, NotFoundError, RemoteError

CHANNEL = {
    "id": "UC_one",
    "snippet": {
        "title": "Channel One",
        "thumbnails": {"high": {"url": "https://img/high.jpg"}},
    },
    "statistics": {"viewCount": "5000", "subscriberCount": "120", "videoCount": "42"},
    "contentDetails": {"relatedPlaylists": {"uploads": "UU_one"}},
}


def playlist_item(video_id, published):
    return {
        "snippet": {
            "resourceId": {"videoId": video_id},
            "publishedAt": published,
        }
    }


def video(video_id, duration="PT5M", views="100"):
    return {
        "id": video_id,
        "snippet": {
            "title": f"Video {video_id}",
            "publishedAt": "2024-05-01T12:00:00Z",
            "channelId": "UC_one",
            "thumbnails": {},
        },
        "statistics": {"viewCount": views, "likeCount": "3"},
        "contentDetails": {"duration": duration},
    }


@pytest.fixture
async def api():
    """Runs a fake YouTube Data API and yields (client, request log, routes)."""
    requests = []
    handlers = {}

    async def dispatch(request):
        requests.append((request.match_info["endpoint"], dict(request.query)))
        return await handlers[request.match_info["endpoint"]](request)

    app = web.Application()
    app.router.add_get("/youtube/v3/{endpoint}", dispatch)
    server = TestServer(app)
    await server.start_server()
    client = CatalogueClient(base_url=str(server.make_url("/youtube/v3/")))
    try:
        yield client, requests, handlers
    finally:
        await client.close()
        await server.close()


async def test_resolve_by_handle_and_id(api):
    client, requests, handlers = api

    async def channels(request):
        return web.json_response({"items": [CHANNEL]})

    handlers["channels"] = channels

    channel = await client.resolve_channel("KEY", "@one")
    assert channel.id == "UC_one"
    assert channel.uploads_playlist_id == "UU_one"
    assert channel.counters() == {"subscriber_count": 120, "view_count": 5000, "video_count": 42}
    assert channel.snippet.thumbnails.best_url() == "https://img/high.jpg"
    assert requests[-1][1]["forHandle"] == "@one"
    assert requests[-1][1]["key"] == "KEY"

    await client.resolve_channel("KEY", "UC_one")
    assert requests[-1][1]["id"] == "UC_one"
    assert "forHandle" not in requests[-1][1]


async def test_resolve_missing_channel(api):
    client, _, handlers = api

    async def channels(request):
        return web.json_response({"kind": "youtube#channelListResponse"})

    handlers["channels"] = channels
    with pytest.raises(NotFoundError):
        await client.resolve_channel("KEY", "@ghost")


async def test_non_2xx_is_remote_error(api):
    client, _, handlers = api

    async def channels(request):
        return web.Response(status=403, text='{"error": {"errors": [{"reason": "quotaExceeded"}]}}')

    handlers["channels"] = channels
    with pytest.raises(RemoteError) as exc_info:
        await client.resolve_channel("KEY", "@one")
    assert exc_info.value.status == 403
    assert exc_info.value.is_quota_error


async def test_invalid_bodies_are_decode_errors(api):
    client, _, handlers = api

    async def not_json(request):
        return web.Response(text="<html>oops</html>")

    async def wrong_shape(request):
        return web.json_response({"items": [{"id": "UC_one"}]})

    handlers["channels"] = not_json
    with pytest.raises(DecodeError):
        await client.resolve_channel("KEY", "@one")

    handlers["channels"] = wrong_shape
    with pytest.raises(DecodeError):
        await client.resolve_channel("KEY", "@one")


async def test_transport_failure_is_status_zero():
    client = CatalogueClient(base_url="http://127.0.0.1:9/")
    try:
        with pytest.raises(RemoteError) as exc_info:
            await client.api_call("channels", "KEY", id="UC_one")
    finally:
        await client.close()
    assert exc_info.value.status == 0
    assert not exc_info.value.is_quota_error


async def test_list_uploads_pages_until_cutoff(api):
    client, requests, handlers = api

    async def playlist_items(request):
        if request.query.get("pageToken") == "p2":
            return web.json_response(
                {
                    "items": [
                        playlist_item("c", "2024-05-08T00:00:00Z"),
                        playlist_item("d", "2024-04-01T00:00:00Z"),
                        playlist_item("e", "2024-03-01T00:00:00Z"),
                    ],
                    "nextPageToken": "p3",
                }
            )
        return web.json_response(
            {
                "items": [
                    playlist_item("a", "2024-05-10T00:00:00Z"),
                    playlist_item("b", "2024-05-09T00:00:00Z"),
                ],
                "nextPageToken": "p2",
            }
        )

    handlers["playlistItems"] = playlist_items
    cutoff = datetime(2024, 5, 1, tzinfo=timezone.utc)
    listing = await client.list_upload_ids("KEY", "UU_one", published_after=cutoff)

    assert listing.item_ids == ["a", "b", "c"]
    assert listing.pages == 2
    assert requests[0][1]["playlistId"] == "UU_one"
    assert requests[0][1]["maxResults"] == "50"
    assert "pageToken" not in requests[0][1]


async def test_list_uploads_stops_without_next_page(api):
    client, _, handlers = api

    async def playlist_items(request):
        return web.json_response({"items": [playlist_item("a", "2020-01-01T00:00:00Z")]})

    handlers["playlistItems"] = playlist_items
    listing = await client.list_upload_ids("KEY", "UU_one")
    assert (listing.item_ids, listing.pages) == (["a"], 1)


async def test_list_uploads_safety_cap(api):
    client, _, handlers = api
    counter = {"n": 0}

    async def playlist_items(request):
        items = []
        for _ in range(50):
            counter["n"] += 1
            items.append(playlist_item(f"v{counter['n']}", "2024-05-10T00:00:00Z"))
        return web.json_response({"items": items, "nextPageToken": "more"})

    handlers["playlistItems"] = playlist_items
    listing = await client.list_upload_ids("KEY", "UU_one")
    assert len(listing.item_ids) == UPLOAD_LIST_CAP
    assert listing.pages == UPLOAD_LIST_CAP // 50


async def test_fetch_details_batches_of_fifty(api):
    client, requests, handlers = api

    async def videos(request):
        ids = request.query["id"].split(",")
        return web.json_response({"items": [video(i, duration="PT45S") for i in ids]})

    handlers["videos"] = videos
    ids = [f"v{i}" for i in range(120)]
    resources, request_count = await client.fetch_item_details("KEY", ids)

    assert request_count == 3
    assert [len(q["id"].split(",")) for _, q in requests] == [50, 50, 20]
    assert [r.id for r in resources] == ids
    row = resources[0].to_row()
    assert row["is_short"] is True
    assert (row["view_count"], row["like_count"], row["comment_count"]) == (100, 3, None)
