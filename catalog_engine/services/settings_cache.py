"""Read-through cache over the persisted settings table."""

import logging
import time
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_engine import metrics
from catalog_engine.cache import Clock, TTLCache
from catalog_engine.config import settings
from catalog_engine.db.encryption import encrypt_value
from catalog_engine.db.models import Setting

logger = logging.getLogger(__name__)


class SETTING_KEYS:
    """Well-known setting keys."""

    MEDUSA_ADMIN_URL = "medusa_admin_url"
    MEDUSA_ADMIN_TOKEN = "medusa_admin_token"
    FX_BASE_CURRENCY = "fx_base_currency"
    DEFAULT_MARGIN_PCT = "default_margin_pct"
    DEFAULT_LOCALE = "default_locale"


# Settings whose values are encrypted before they reach the table
ENCRYPTED_KEYS = frozenset({SETTING_KEYS.MEDUSA_ADMIN_TOKEN})


class SettingsCache:
    """
    Short-TTL read-through cache for application settings.

    The cache never writes to the store. Writers call `update_settings`,
    which invalidates the keys it touched.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        self.session_factory = session_factory
        ttl = ttl_seconds if ttl_seconds is not None else settings.settings_cache_ttl_seconds
        self._cache: TTLCache[Any] = TTLCache(ttl, clock or time.time)

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value by key.

        Args:
            key: Setting key (e.g., "medusa_admin_url")
            default: Value returned when the key is absent or the store fails

        Returns:
            Stored JSON value, or the default
        """
        if self._cache.is_fresh(key):
            metrics.record_settings_cache("hit")
            return self._cache.get(key)

        try:
            async with self.session_factory() as db:
                result = await db.execute(select(Setting).where(Setting.key == key))
                setting = result.scalar_one_or_none()
        except Exception as e:
            metrics.record_settings_cache("error")
            logger.error(f"Error getting setting {key}: {e}")
            return default

        metrics.record_settings_cache("miss")
        if setting is None:
            return default

        self._cache.set(key, setting.value_jsonb)
        return setting.value_jsonb

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Get several settings at once; missing keys map to None."""
        return {key: await self.get(key) for key in keys}

    async def get_all(self) -> list[Setting]:
        """All setting rows, straight from the store."""
        async with self.session_factory() as db:
            result = await db.execute(select(Setting).order_by(Setting.key))
            return list(result.scalars().all())

    def invalidate(self, key: Optional[str] = None) -> None:
        """Invalidate one key, or the whole cache when key is None."""
        self._cache.invalidate(key)


async def upsert_setting(db: AsyncSession, key: str, value: Any) -> Setting:
    """Insert or replace a setting row. The caller commits."""
    result = await db.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()
    now = datetime.utcnow()

    if setting is None:
        setting = Setting(key=key, value_jsonb=value, created_at=now, updated_at=now)
        db.add(setting)
    else:
        setting.value_jsonb = value
        setting.updated_at = now
    return setting


async def update_settings(
    session_factory: async_sessionmaker,
    cache: Optional[SettingsCache],
    values: dict[str, Any],
) -> list[str]:
    """
    Persist settings and invalidate their cache entries.

    Owner-only access is enforced by the caller.

    Returns:
        Keys that were written
    """
    written: list[str] = []
    async with session_factory() as db:
        for key, value in values.items():
            if key in ENCRYPTED_KEYS and value:
                value = encrypt_value(str(value))
            await upsert_setting(db, key, value)
            written.append(key)
        await db.commit()

    if cache is not None:
        for key in written:
            cache.invalidate(key)

    logger.info(f"Updated settings: {', '.join(written) or 'none'}")
    return written
