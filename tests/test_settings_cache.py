"""Tests for the TTL cache and the settings read-through cache."""

import pytest

from catalog_engine.cache import TTLCache
from catalog_engine.db.encryption import decrypt_value
from catalog_engine.db.models import Setting
from catalog_engine.services.settings_cache import (
    SETTING_KEYS,
    SettingsCache,
    update_settings,
    upsert_setting,
)
from conftest import FakeClock


def test_ttl_cache_expires_entries():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=60, clock=clock)

    cache.set("a", 1)
    assert cache.get("a") == 1
    assert cache.is_fresh("a")

    clock.advance(59)
    assert cache.get("a") == 1

    clock.advance(1)
    assert cache.get("a") is None
    assert not cache.is_fresh("a")
    # Expired entries stay available for fallbacks
    assert cache.get_entry("a").value == 1
    assert cache.stats() == {"entries": 1, "fresh": 0, "stale": 1, "ttl_seconds": 60}


def test_ttl_cache_invalidate():
    cache = TTLCache(ttl_seconds=60, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2

    cache.invalidate()
    assert len(cache) == 0


async def _write_raw(session_factory, key, value):
    async with session_factory() as db:
        await upsert_setting(db, key, value)
        await db.commit()


async def test_get_missing_returns_default(session_factory, clock):
    cache = SettingsCache(session_factory, ttl_seconds=300, clock=clock)

    assert await cache.get("missing") is None
    assert await cache.get("missing", "fallback") == "fallback"


async def test_misses_are_not_cached(session_factory, clock):
    cache = SettingsCache(session_factory, ttl_seconds=300, clock=clock)

    assert await cache.get(SETTING_KEYS.DEFAULT_LOCALE) is None
    await _write_raw(session_factory, SETTING_KEYS.DEFAULT_LOCALE, "fr-CA")

    assert await cache.get(SETTING_KEYS.DEFAULT_LOCALE) == "fr-CA"


async def test_cached_value_served_until_ttl_expires(session_factory, clock):
    cache = SettingsCache(session_factory, ttl_seconds=300, clock=clock)
    await _write_raw(session_factory, SETTING_KEYS.DEFAULT_MARGIN_PCT, 40)

    assert await cache.get(SETTING_KEYS.DEFAULT_MARGIN_PCT) == 40

    # A write that bypasses update_settings is not seen while the entry is fresh
    await _write_raw(session_factory, SETTING_KEYS.DEFAULT_MARGIN_PCT, 55)
    clock.advance(299)
    assert await cache.get(SETTING_KEYS.DEFAULT_MARGIN_PCT) == 40

    clock.advance(1)
    assert await cache.get(SETTING_KEYS.DEFAULT_MARGIN_PCT) == 55


async def test_update_settings_invalidates_written_keys(session_factory, clock):
    cache = SettingsCache(session_factory, ttl_seconds=300, clock=clock)
    await _write_raw(session_factory, SETTING_KEYS.FX_BASE_CURRENCY, "CAD")
    assert await cache.get(SETTING_KEYS.FX_BASE_CURRENCY) == "CAD"

    written = await update_settings(session_factory, cache, {SETTING_KEYS.FX_BASE_CURRENCY: "USD"})

    assert written == [SETTING_KEYS.FX_BASE_CURRENCY]
    assert await cache.get(SETTING_KEYS.FX_BASE_CURRENCY) == "USD"


async def test_update_settings_encrypts_medusa_token(session_factory, clock):
    cache = SettingsCache(session_factory, ttl_seconds=300, clock=clock)

    await update_settings(session_factory, cache, {SETTING_KEYS.MEDUSA_ADMIN_TOKEN: "sk_live_secret"})

    stored = await cache.get(SETTING_KEYS.MEDUSA_ADMIN_TOKEN)
    assert stored != "sk_live_secret"
    assert decrypt_value(stored) == "sk_live_secret"


async def test_store_failure_returns_default(clock):
    def broken_factory():
        raise RuntimeError("database unavailable")

    cache = SettingsCache(broken_factory, ttl_seconds=300, clock=clock)

    assert await cache.get(SETTING_KEYS.MEDUSA_ADMIN_URL, "http://fallback") == "http://fallback"


async def test_get_all_and_get_many(session_factory, clock):
    cache = SettingsCache(session_factory, ttl_seconds=300, clock=clock)
    await _write_raw(session_factory, "b_key", {"nested": True})
    await _write_raw(session_factory, "a_key", 1)

    rows = await cache.get_all()
    assert [row.key for row in rows] == ["a_key", "b_key"]
    assert all(isinstance(row, Setting) for row in rows)

    assert await cache.get_many(["a_key", "b_key", "c_key"]) == {
        "a_key": 1,
        "b_key": {"nested": True},
        "c_key": None,
    }


@pytest.mark.parametrize("ttl", [0, 300])
async def test_invalidate_all(session_factory, clock, ttl):
    cache = SettingsCache(session_factory, ttl_seconds=ttl, clock=clock)
    await _write_raw(session_factory, "k", "v1")
    assert await cache.get("k") == "v1"

    await _write_raw(session_factory, "k", "v2")
    cache.invalidate()
    assert await cache.get("k") == "v2"
