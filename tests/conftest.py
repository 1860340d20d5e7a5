from datetime import datetime, timedelta, timezone

import pytest

from tubewatch.models.records import Channel
from tubewatch.storage.database import CatalogueDB


class FakeClock:
    """A settable clock for code that takes a `clock` callable."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 10, 20, 0, tzinfo=timezone.utc))


@pytest.fixture
def db(tmp_path):
    return CatalogueDB(tmp_path / "catalogue.db")


@pytest.fixture
def make_row():
    def _make_row(item_id, published_at, views=0, likes=None, comments=None, **extra):
        row = {
            "id": item_id,
            "title": extra.pop("title", f"Video {item_id}"),
            "url": f"https://www.youtube.com/watch?v={item_id}",
            "thumbnail": None,
            "published_at": published_at,
            "view_count": views,
            "like_count": likes,
            "comment_count": comments,
            "is_short": extra.pop("is_short", False),
        }
        row.update(extra)
        return row

    return _make_row


@pytest.fixture
def add_channel(db):
    async def _add_channel(channel_id="UC_one", name="Channel One", group_id=None):
        await db.add_channel(Channel(id=channel_id, name=name, group_id=group_id))
        return channel_id

    return _add_channel
