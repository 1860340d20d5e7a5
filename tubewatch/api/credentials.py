"""
Rotating pool of YouTube Data API keys backed by the catalogue database.
"""

import logging
import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from tubewatch.exceptions import CredentialsExhaustedError, NoActiveCredentialError
from tubewatch.models.records import Credential
from tubewatch.storage.database import CatalogueDB
from tubewatch.utils.formatting import from_iso, to_iso

log = logging.getLogger(__name__)

DEFAULT_RESET_OFFSET_HOURS = -8


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _mask(key: str) -> str:
    return f"{key[:4]}…{key[-4:]}" if len(key) > 8 else "****"


class CredentialPool:
    """
    Hands out the least recently used active key and keeps per-key usage.

    Usage resets when the "quota day" changes. The quota day is the calendar
    date at a fixed UTC offset (UTC-8 by default); this approximates the
    provider's daily reset and is not its exact instant.
    """

    def __init__(
        self,
        db: CatalogueDB,
        reset_offset_hours: int = DEFAULT_RESET_OFFSET_HOURS,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._db = db
        self._offset = timedelta(hours=reset_offset_hours)
        self._clock = clock

    def quota_day(self, moment: datetime) -> date:
        """The quota day a UTC moment falls on."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return (moment.astimezone(timezone.utc) + self._offset).date()

    async def acquire(self, excluding: Iterable[str] = ()) -> str:
        """
        Selects the least recently used active key not in `excluding` and stamps
        its `last_used` in the same transaction.

        Raises:
            NoActiveCredentialError: No active key is configured.
            CredentialsExhaustedError: Every active key is in `excluding`.
        """
        excluded = set(excluding)
        now = self._clock()
        now_iso = to_iso(now)
        today = self.quota_day(now)

        def _acquire(conn: sqlite3.Connection) -> Optional[str]:
            rows = conn.execute(
                "SELECT key, last_used FROM api_keys WHERE is_active = 1 "
                "ORDER BY last_used IS NOT NULL, last_used ASC, id ASC"
            ).fetchall()
            if not rows:
                raise NoActiveCredentialError(
                    "No active API key configured. Add one with 'tubewatch add-key'."
                )
            for row in rows:
                if row["key"] in excluded:
                    continue
                # A key first used on a new quota day starts from zero usage.
                last_used = from_iso(row["last_used"])
                if last_used is not None and self.quota_day(last_used) != today:
                    conn.execute(
                        "UPDATE api_keys SET last_used = ?, usage_today = 0, "
                        "is_quota_exhausted = 0, last_error = NULL WHERE key = ?",
                        (now_iso, row["key"]),
                    )
                else:
                    conn.execute(
                        "UPDATE api_keys SET last_used = ? WHERE key = ?",
                        (now_iso, row["key"]),
                    )
                return row["key"]
            return None

        key = await self._db.run_in_transaction(_acquire)
        if key is None:
            raise CredentialsExhaustedError(
                f"All {len(excluded)} active API keys were tried and failed; "
                "daily quota is likely exhausted."
            )
        log.debug(f"Acquired API key {_mask(key)}")
        return key

    async def record_usage(self, key: str, units: int) -> None:
        """
        Adds `units` to the key's usage for the current quota day, starting a
        fresh count when the day changed. Clears any exhaustion mark. Unknown
        keys are ignored.
        """
        now = self._clock()

        def _record(conn: sqlite3.Connection) -> None:
            row = conn.execute(
                "SELECT usage_today, last_used FROM api_keys WHERE key = ?", (key,)
            ).fetchone()
            if row is None:
                return
            last_used = from_iso(row["last_used"])
            if last_used is None or self.quota_day(last_used) != self.quota_day(now):
                usage = units
            else:
                usage = row["usage_today"] + units
            conn.execute(
                "UPDATE api_keys SET usage_today = ?, last_used = ?, "
                "is_quota_exhausted = 0, last_error = NULL WHERE key = ?",
                (usage, to_iso(now), key),
            )

        await self._db.run_in_transaction(_record)

    async def mark_exhausted(self, key: str, reason: str) -> None:
        """Flags a key as quota-exhausted with the failure reason."""
        log.warning(f"[yellow]API key {_mask(key)} marked exhausted: {reason[:120]}[/yellow]")

        def _mark(conn: sqlite3.Connection) -> None:
            conn.execute(
                "UPDATE api_keys SET is_quota_exhausted = 1, last_error = ? "
                "WHERE key = ?",
                (reason, key),
            )

        await self._db.run_in_transaction(_mark)

    async def add_credential(self, key: str, name: Optional[str] = None) -> bool:
        """Registers a new active key. Returns False if it already exists."""
        key = key.strip()
        if not key:
            raise ValueError("API key must not be empty.")
        now_iso = to_iso(self._clock())

        def _insert(conn: sqlite3.Connection) -> bool:
            cur = conn.execute(
                "INSERT OR IGNORE INTO api_keys (key, name, created_at) VALUES (?, ?, ?)",
                (key, name, now_iso),
            )
            return cur.rowcount > 0

        return await self._db.run_in_transaction(_insert)

    async def list_credentials(self) -> list[Credential]:
        """
        Lists all keys. Usage and exhaustion are shown as reset for keys whose
        last use falls on an earlier quota day; nothing is written back.
        """
        today = self.quota_day(self._clock())

        def _select(conn: sqlite3.Connection) -> list[sqlite3.Row]:
            return conn.execute("SELECT * FROM api_keys ORDER BY id").fetchall()

        credentials = []
        for row in await self._db.run_in_transaction(_select):
            last_used = from_iso(row["last_used"])
            stale = last_used is not None and self.quota_day(last_used) != today
            credentials.append(
                Credential(
                    id=row["id"],
                    key=row["key"],
                    name=row["name"],
                    is_active=bool(row["is_active"]),
                    usage_today=0 if stale else row["usage_today"],
                    last_used=last_used,
                    is_quota_exhausted=False if stale else bool(row["is_quota_exhausted"]),
                    last_error=None if stale else row["last_error"],
                )
            )
        return credentials

    async def ensure_configured(self) -> None:
        """Raises NoActiveCredentialError when no active key exists."""

        def _count(conn: sqlite3.Connection) -> int:
            return conn.execute(
                "SELECT COUNT(*) FROM api_keys WHERE is_active = 1"
            ).fetchone()[0]

        if await self._db.run_in_transaction(_count) == 0:
            raise NoActiveCredentialError(
                "No active API key configured. Add one with 'tubewatch add-key'."
            )
