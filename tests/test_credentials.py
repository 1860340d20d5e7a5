from datetime import datetime, timezone

import pytest

from tubewatch.api.credentials import CredentialPool
from tubewatch.exceptions import (
    ConfigurationError,
    CredentialsExhaustedError,
    NoActiveCredentialError,
)


@pytest.fixture
def pool(db, clock):
    return CredentialPool(db, clock=clock)


async def _usage(db, key):
    def _select(conn):
        return conn.execute(
            "SELECT usage_today, is_quota_exhausted, last_error FROM api_keys WHERE key = ?",
            (key,),
        ).fetchone()

    row = await db.run_in_transaction(_select)
    return row["usage_today"], bool(row["is_quota_exhausted"]), row["last_error"]


async def test_no_keys_is_a_configuration_error(pool):
    with pytest.raises(NoActiveCredentialError) as exc_info:
        await pool.acquire()
    assert isinstance(exc_info.value, ConfigurationError)
    with pytest.raises(NoActiveCredentialError):
        await pool.ensure_configured()


async def test_rotates_least_recently_used(pool, clock):
    for key in ("k1", "k2", "k3"):
        await pool.add_credential(key)

    acquired = []
    for _ in range(4):
        acquired.append(await pool.acquire())
        clock.advance(minutes=1)
    assert acquired == ["k1", "k2", "k3", "k1"]


async def test_exclusion_and_exhaustion(pool, clock):
    await pool.add_credential("k1")
    await pool.add_credential("k2")

    first = await pool.acquire()
    clock.advance(seconds=1)
    second = await pool.acquire(excluding={first})
    assert {first, second} == {"k1", "k2"}

    with pytest.raises(CredentialsExhaustedError):
        await pool.acquire(excluding={"k1", "k2"})


async def test_inactive_keys_are_never_selected(db, pool):
    await pool.add_credential("k1")

    def _deactivate(conn):
        conn.execute("UPDATE api_keys SET is_active = 0")

    await db.run_in_transaction(_deactivate)
    with pytest.raises(NoActiveCredentialError):
        await pool.acquire()


async def test_usage_accumulates_within_a_quota_day(db, pool, clock):
    await pool.add_credential("k1")
    key = await pool.acquire()
    await pool.record_usage(key, 3)
    clock.advance(hours=1)
    await pool.record_usage(key, 2)
    assert (await _usage(db, key))[0] == 5


async def test_usage_resets_on_new_quota_day(db, pool, clock):
    await pool.add_credential("k1")
    key = await pool.acquire()
    await pool.record_usage(key, 40)
    await pool.mark_exhausted(key, "quotaExceeded")
    assert await _usage(db, key) == (40, True, "quotaExceeded")

    clock.advance(days=1)
    await pool.record_usage(key, 2)
    assert await _usage(db, key) == (2, False, None)


async def test_usage_resets_when_acquired_on_a_new_quota_day(db, pool, clock):
    await pool.add_credential("k1")
    await pool.record_usage("k1", 7)
    await pool.acquire()
    await pool.record_usage("k1", 1)
    assert (await _usage(db, "k1"))[0] == 8

    clock.advance(days=1)
    await pool.acquire()
    await pool.record_usage("k1", 1)
    assert (await _usage(db, "k1"))[0] == 1


def test_quota_day_uses_the_offset(db):
    pool = CredentialPool(db, reset_offset_hours=-8)
    before_reset = datetime(2024, 3, 10, 7, 59, tzinfo=timezone.utc)
    after_reset = datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)
    assert pool.quota_day(before_reset) != pool.quota_day(after_reset)
    assert pool.quota_day(after_reset) == datetime(2024, 3, 10).date()


async def test_record_usage_ignores_unknown_keys(db, pool):
    await pool.record_usage("nope", 5)
    assert await pool.list_credentials() == []


async def test_list_shows_stale_usage_as_reset(pool, clock):
    await pool.add_credential("k1", name="main")
    await pool.record_usage("k1", 9)
    await pool.mark_exhausted("k1", "quota")

    [today] = await pool.list_credentials()
    assert (today.usage_today, today.is_quota_exhausted) == (9, True)

    clock.advance(days=1)
    [tomorrow] = await pool.list_credentials()
    assert tomorrow.name == "main"
    assert (tomorrow.usage_today, tomorrow.is_quota_exhausted) == (0, False)


async def test_duplicate_keys_are_not_added_twice(pool):
    assert await pool.add_credential("k1") is True
    assert await pool.add_credential(" k1 ") is False
