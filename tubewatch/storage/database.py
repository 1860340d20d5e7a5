"""
Manages the SQLite catalogue of groups, channels, items and API credentials.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, TypeVar

from tubewatch.core.metrics import recompute_baseline
from tubewatch.models.records import (
    Channel,
    DownloadTarget,
    Item,
    RankCandidate,
)
from tubewatch.utils.formatting import from_iso, to_iso

log = logging.getLogger(__name__)

T = TypeVar("T")

TERMINAL_DOWNLOAD_STATES = ("completed", "error", "cancelled")
RANKING_ROW_CAP = 1000

SCHEMA = """
CREATE TABLE IF NOT EXISTS groups (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    is_pinned INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS channels (
    id TEXT PRIMARY KEY NOT NULL,
    url TEXT NOT NULL DEFAULT '',
    name TEXT NOT NULL,
    thumbnail TEXT,
    subscriber_count INTEGER NOT NULL DEFAULT 0,
    view_count INTEGER NOT NULL DEFAULT 0,
    video_count INTEGER NOT NULL DEFAULT 0,
    avg_views REAL NOT NULL DEFAULT 0,
    std_dev REAL NOT NULL DEFAULT 0,
    last_upload_at TEXT,
    group_id INTEGER REFERENCES groups(id) ON DELETE SET NULL,
    is_favorite INTEGER NOT NULL DEFAULT 0,
    is_pinned INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS videos (
    id TEXT PRIMARY KEY NOT NULL,
    channel_id TEXT NOT NULL REFERENCES channels(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    url TEXT NOT NULL DEFAULT '',
    thumbnail TEXT,
    published_at TEXT NOT NULL,
    view_count INTEGER NOT NULL DEFAULT 0,
    like_count INTEGER,
    comment_count INTEGER,
    is_short INTEGER NOT NULL DEFAULT 0,
    is_favorite INTEGER NOT NULL DEFAULT 0,
    is_downloaded INTEGER NOT NULL DEFAULT 0,
    local_path TEXT,
    download_status TEXT NOT NULL DEFAULT 'idle',
    download_error TEXT,
    downloaded_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_videos_channel_published
    ON videos(channel_id, published_at DESC);
CREATE INDEX IF NOT EXISTS idx_videos_published ON videos(published_at);
CREATE TABLE IF NOT EXISTS api_keys (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL UNIQUE,
    name TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    usage_today INTEGER NOT NULL DEFAULT 0,
    last_used TEXT,
    is_quota_exhausted INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    created_at TEXT NOT NULL
);
"""


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


class CatalogueDB:
    """
    A thread-safe SQLite catalogue with a bounded pool of worker-thread
    connections. Every public coroutine runs one short synchronous unit of
    work in a thread; transactions never span an await.
    """

    def __init__(self, db_path: Path, pool_size: int = 5):
        self.db_path = Path(db_path)
        self._pool_size = pool_size
        self._connection_semaphore = asyncio.Semaphore(pool_size)
        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Gets a new database connection with optimized PRAGMA settings."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA busy_timeout=5000;")
            return conn
        except sqlite3.Error as e:
            log.error(f"Failed to connect to catalogue database: {e}")
            raise

    def _initialize_db(self) -> None:
        """Creates the database file and schema if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._get_connection()
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def _transaction_sync(
        self, func: Callable[..., T], *args: Any
    ) -> T:
        """Runs `func(conn, *args)` in one transaction, rolling back on error."""
        conn = self._get_connection()
        try:
            with conn:
                return func(conn, *args)
        finally:
            conn.close()

    async def run_in_transaction(self, func: Callable[..., T], *args: Any) -> T:
        """
        Runs a synchronous unit of work inside a transaction on a worker thread,
        within the connection pool semaphore.
        """
        async with self._connection_semaphore:
            return await asyncio.to_thread(self._transaction_sync, func, *args)

    # Groups and channels

    async def add_group(self, name: str) -> int:
        def _insert(conn: sqlite3.Connection) -> int:
            row = conn.execute("SELECT id FROM groups WHERE name = ?", (name,)).fetchone()
            if row:
                return row["id"]
            cur = conn.execute(
                "INSERT INTO groups (name, created_at) VALUES (?, ?)",
                (name, _now_iso()),
            )
            return cur.lastrowid

        return await self.run_in_transaction(_insert)

    async def find_group(self, name: str) -> Optional[int]:
        def _select(conn: sqlite3.Connection) -> Optional[int]:
            row = conn.execute("SELECT id FROM groups WHERE name = ?", (name,)).fetchone()
            return row["id"] if row else None

        return await self.run_in_transaction(_select)

    async def add_channel(self, channel: Channel) -> bool:
        """Inserts a channel. Returns False if it already exists."""

        def _insert(conn: sqlite3.Connection) -> bool:
            cur = conn.execute(
                "INSERT OR IGNORE INTO channels (id, url, name, thumbnail, "
                "subscriber_count, view_count, video_count, group_id, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    channel.id,
                    channel.url,
                    channel.name,
                    channel.thumbnail,
                    channel.subscriber_count,
                    channel.view_count,
                    channel.video_count,
                    channel.group_id,
                    _now_iso(),
                ),
            )
            return cur.rowcount > 0

        return await self.run_in_transaction(_insert)

    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        def _select(conn: sqlite3.Connection) -> Optional[Channel]:
            row = conn.execute(
                "SELECT * FROM channels WHERE id = ?", (channel_id,)
            ).fetchone()
            return _row_to_channel(row) if row else None

        return await self.run_in_transaction(_select)

    async def list_channels(self, group_id: Optional[int] = None) -> list[Channel]:
        """Lists channels; group_id -1 selects channels without a group."""

        def _select(conn: sqlite3.Connection) -> list[Channel]:
            if group_id is None:
                rows = conn.execute("SELECT * FROM channels ORDER BY name").fetchall()
            elif group_id == -1:
                rows = conn.execute(
                    "SELECT * FROM channels WHERE group_id IS NULL ORDER BY name"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM channels WHERE group_id = ? ORDER BY name",
                    (group_id,),
                ).fetchall()
            return [_row_to_channel(row) for row in rows]

        return await self.run_in_transaction(_select)

    # Sync

    async def apply_sync(
        self,
        channel_id: str,
        counters: Optional[dict[str, int]],
        rows: list[dict[str, Any]],
    ) -> int:
        """
        Persists one channel's sync result in a single transaction: channel
        counters, item upserts and the baseline recompute.

        Returns:
            The number of items upserted.
        """
        return await self.run_in_transaction(
            self._apply_sync_txn, channel_id, counters, rows
        )

    @staticmethod
    def _apply_sync_txn(
        conn: sqlite3.Connection,
        channel_id: str,
        counters: Optional[dict[str, int]],
        rows: list[dict[str, Any]],
    ) -> int:
        if counters is not None:
            conn.execute(
                "UPDATE channels SET subscriber_count = ?, view_count = ?, "
                "video_count = ? WHERE id = ?",
                (
                    counters["subscriber_count"],
                    counters["view_count"],
                    counters["video_count"],
                    channel_id,
                ),
            )

        now = _now_iso()
        upserted = 0
        for row in rows:
            try:
                conn.execute(
                    """
                    INSERT INTO videos (id, channel_id, title, url, thumbnail,
                        published_at, view_count, like_count, comment_count,
                        is_short, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        title = excluded.title,
                        view_count = excluded.view_count,
                        like_count = excluded.like_count,
                        comment_count = excluded.comment_count,
                        updated_at = excluded.updated_at
                    """,
                    (
                        row["id"],
                        channel_id,
                        row["title"],
                        row.get("url", ""),
                        row.get("thumbnail"),
                        to_iso(row["published_at"]),
                        row.get("view_count", 0),
                        row.get("like_count"),
                        row.get("comment_count"),
                        int(bool(row.get("is_short", False))),
                        now,
                        now,
                    ),
                )
                upserted += 1
            except sqlite3.Error as e:
                log.warning(f"Skipping item '{row.get('id')}' of {channel_id}: {e}")

        recompute_baseline(conn, channel_id)
        return upserted

    async def recompute_baseline(self, channel_id: str) -> None:
        await self.run_in_transaction(recompute_baseline, channel_id)

    async def recompute_all_baselines(self) -> int:
        """Recomputes every channel's baseline. Returns the number of channels."""

        def _recompute(conn: sqlite3.Connection) -> int:
            ids = [row["id"] for row in conn.execute("SELECT id FROM channels")]
            count = 0
            for channel_id in ids:
                try:
                    recompute_baseline(conn, channel_id)
                    count += 1
                except sqlite3.Error as e:
                    log.warning(f"Baseline recompute failed for {channel_id}: {e}")
            return count

        return await self.run_in_transaction(_recompute)

    # Items and downloads

    async def get_item(self, item_id: str) -> Optional[Item]:
        def _select(conn: sqlite3.Connection) -> Optional[Item]:
            row = conn.execute("SELECT * FROM videos WHERE id = ?", (item_id,)).fetchone()
            return _row_to_item(row) if row else None

        return await self.run_in_transaction(_select)

    async def get_download_target(self, item_id: str) -> Optional[DownloadTarget]:
        def _select(conn: sqlite3.Connection) -> Optional[DownloadTarget]:
            row = conn.execute(
                "SELECT v.title, c.name AS channel_name, g.name AS group_name "
                "FROM videos v JOIN channels c ON v.channel_id = c.id "
                "LEFT JOIN groups g ON c.group_id = g.id WHERE v.id = ?",
                (item_id,),
            ).fetchone()
            if not row:
                return None
            return DownloadTarget(
                item_id=item_id,
                title=row["title"],
                channel_name=row["channel_name"],
                group_name=row["group_name"],
            )

        return await self.run_in_transaction(_select)

    async def mark_download_started(self, item_id: str) -> None:
        await self._execute(
            "UPDATE videos SET download_status = 'downloading', download_error = NULL, "
            "updated_at = ? WHERE id = ?",
            (_now_iso(), item_id),
        )

    async def mark_download_completed(
        self, item_id: str, local_path: Optional[str], finished_at: datetime
    ) -> None:
        await self._execute(
            "UPDATE videos SET download_status = 'completed', download_error = NULL, "
            "is_downloaded = 1, local_path = ?, downloaded_at = ?, updated_at = ? "
            "WHERE id = ?",
            (local_path, to_iso(finished_at), _now_iso(), item_id),
        )

    async def mark_download_failed(
        self, item_id: str, error: str, cancelled: bool = False
    ) -> None:
        status = "cancelled" if cancelled else "error"
        await self._execute(
            "UPDATE videos SET download_status = ?, download_error = ?, updated_at = ? "
            "WHERE id = ?",
            (status, error, _now_iso(), item_id),
        )

    async def clear_download_history(self, item_id: Optional[str] = None) -> int:
        """
        Moves terminal downloads back to idle and clears their error text.
        Local path, downloaded flag and timestamp are left untouched.
        """
        placeholders = ",".join("?" * len(TERMINAL_DOWNLOAD_STATES))
        query = (
            "UPDATE videos SET download_status = 'idle', download_error = NULL "  # noqa: S608
            f"WHERE download_status IN ({placeholders})"
        )
        params: tuple = TERMINAL_DOWNLOAD_STATES
        if item_id is not None:
            query += " AND id = ?"
            params = (*TERMINAL_DOWNLOAD_STATES, item_id)
        return await self._execute(query, params)

    # Ranking and aggregates

    async def ranking_candidates(
        self,
        since: Optional[datetime],
        group_id: Optional[int] = None,
        kind: str = "all",
    ) -> list[RankCandidate]:
        """
        Loads items published since a threshold, joined with their channel
        baseline. `kind` is 'all', 'video' or 'short'; group_id -1 selects
        uncategorized channels.
        """
        where, params = _window_filter(since, group_id, kind)
        query = (
            "SELECT v.id, v.title, v.channel_id, c.name AS channel_name, "  # noqa: S608
            "v.published_at, v.view_count, v.like_count, v.comment_count, "
            "v.is_short, c.avg_views, c.std_dev "
            "FROM videos v JOIN channels c ON v.channel_id = c.id "
            f"WHERE {where} ORDER BY v.published_at DESC LIMIT {RANKING_ROW_CAP}"
        )

        def _select(conn: sqlite3.Connection) -> list[RankCandidate]:
            return [
                RankCandidate(
                    item_id=row["id"],
                    title=row["title"],
                    channel_id=row["channel_id"],
                    channel_name=row["channel_name"],
                    published_at=from_iso(row["published_at"]),
                    view_count=row["view_count"],
                    like_count=row["like_count"],
                    comment_count=row["comment_count"],
                    is_short=bool(row["is_short"]),
                    channel_avg=row["avg_views"],
                    channel_std_dev=row["std_dev"],
                )
                for row in conn.execute(query, params)
            ]

        return await self.run_in_transaction(_select)

    async def group_stats(
        self, since: Optional[datetime], kind: str = "all"
    ) -> list[dict[str, Any]]:
        """Total and average views per group for items in the window."""
        where, params = _window_filter(since, None, kind)
        query = (
            "SELECT g.id, COALESCE(g.name, 'Uncategorized') AS name, "  # noqa: S608
            "SUM(v.view_count) AS total_views, COUNT(v.id) AS video_count, "
            "CAST(SUM(v.view_count) AS REAL) / COUNT(v.id) AS avg_view_count "
            "FROM videos v JOIN channels c ON v.channel_id = c.id "
            "LEFT JOIN groups g ON c.group_id = g.id "
            f"WHERE {where} GROUP BY g.id, g.name ORDER BY avg_view_count DESC"
        )
        return await self._fetch_dicts(query, params)

    async def channel_stats(
        self,
        since: Optional[datetime],
        group_id: Optional[int] = None,
        kind: str = "all",
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Total and average views per channel for items in the window."""
        where, params = _window_filter(since, group_id, kind)
        query = (
            "SELECT c.id, c.name, c.subscriber_count, "  # noqa: S608
            "SUM(v.view_count) AS total_views, COUNT(v.id) AS video_count, "
            "CAST(SUM(v.view_count) AS REAL) / COUNT(v.id) AS avg_views "
            "FROM videos v JOIN channels c ON v.channel_id = c.id "
            f"WHERE {where} GROUP BY c.id ORDER BY total_views DESC LIMIT ?"
        )
        return await self._fetch_dicts(query, (*params, limit))

    # Helpers

    async def _execute(self, query: str, params: Iterable[Any] = ()) -> int:
        def _run(conn: sqlite3.Connection) -> int:
            return conn.execute(query, tuple(params)).rowcount

        return await self.run_in_transaction(_run)

    async def _fetch_dicts(
        self, query: str, params: Iterable[Any] = ()
    ) -> list[dict[str, Any]]:
        def _run(conn: sqlite3.Connection) -> list[dict[str, Any]]:
            return [dict(row) for row in conn.execute(query, tuple(params))]

        return await self.run_in_transaction(_run)

    def _vacuum_sync(self) -> bool:
        """Synchronous implementation for optimizing the database."""
        conn = self._get_connection()
        try:
            conn.execute("VACUUM;")
            conn.execute("ANALYZE;")
            log.info("Catalogue database optimized successfully.")
            return True
        except sqlite3.Error as e:
            log.error(f"Database vacuum failed: {e}")
            return False
        finally:
            conn.close()

    async def vacuum(self) -> bool:
        """Optimizes the database file by rebuilding it."""
        async with self._connection_semaphore:
            return await asyncio.to_thread(self._vacuum_sync)


def _window_filter(
    since: Optional[datetime], group_id: Optional[int], kind: str
) -> tuple[str, tuple]:
    clauses: list[str] = []
    params: list[Any] = []
    if since is not None:
        clauses.append("v.published_at >= ?")
        params.append(to_iso(since))
    if group_id == -1:
        clauses.append("c.group_id IS NULL")
    elif group_id is not None:
        clauses.append("c.group_id = ?")
        params.append(group_id)
    if kind == "video":
        clauses.append("v.is_short = 0")
    elif kind == "short":
        clauses.append("v.is_short = 1")
    return (" AND ".join(clauses) or "1 = 1"), tuple(params)


def _row_to_channel(row: sqlite3.Row) -> Channel:
    return Channel(
        id=row["id"],
        name=row["name"],
        url=row["url"],
        thumbnail=row["thumbnail"],
        subscriber_count=row["subscriber_count"],
        view_count=row["view_count"],
        video_count=row["video_count"],
        avg_views=row["avg_views"],
        std_dev=row["std_dev"],
        last_upload_at=from_iso(row["last_upload_at"]),
        group_id=row["group_id"],
        is_favorite=bool(row["is_favorite"]),
        is_pinned=bool(row["is_pinned"]),
    )


def _row_to_item(row: sqlite3.Row) -> Item:
    return Item(
        id=row["id"],
        channel_id=row["channel_id"],
        title=row["title"],
        published_at=from_iso(row["published_at"]),
        view_count=row["view_count"],
        like_count=row["like_count"],
        comment_count=row["comment_count"],
        is_short=bool(row["is_short"]),
        url=row["url"],
        thumbnail=row["thumbnail"],
        download_status=row["download_status"],
        download_error=row["download_error"],
        is_downloaded=bool(row["is_downloaded"]),
        local_path=row["local_path"],
        downloaded_at=from_iso(row["downloaded_at"]),
    )
