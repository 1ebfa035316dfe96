"""FX conversion service.

Fetches and caches exchange rates. A failed provider call never fails a
price computation: the last known rate is reused, and with nothing cached
the identity rate 1.0 is returned.
"""

import logging
import time
from typing import Optional, Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_engine import metrics
from catalog_engine.cache import Clock, TTLCache
from catalog_engine.config import settings
from catalog_engine.db.models import Setting
from catalog_engine.services.settings_cache import upsert_setting

logger = logging.getLogger(__name__)

IDENTITY_RATE = 1.0


class FxProviderError(RuntimeError):
    """Raised when the rate provider is unreachable or answers garbage."""


class RateProvider(Protocol):
    async def convert(self, from_currency: str, to_currency: str) -> float: ...


class ExchangeRateHostClient:
    """Client for exchangerate.host style `/convert` endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.fx_provider_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.fx_api_key
        self.timeout = timeout or settings.fx_request_timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def convert(self, from_currency: str, to_currency: str) -> float:
        """
        Fetch the rate for one unit of from_currency in to_currency.

        Raises:
            FxProviderError: On transport failure, non-2xx status or an invalid body
        """
        params = {"from": from_currency, "to": to_currency}
        if self.api_key:
            params["access_key"] = self.api_key

        client = await self._get_client()
        try:
            response = await client.get(f"{self.base_url}/convert", params=params)
        except httpx.HTTPError as e:
            raise FxProviderError(f"FX provider request failed: {type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            raise FxProviderError(
                f"Failed to fetch exchange rate: HTTP {response.status_code} {response.reason_phrase}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise FxProviderError("Invalid exchange rate response: body is not JSON") from e

        if not isinstance(data, dict) or not data.get("success"):
            raise FxProviderError("Invalid exchange rate response")
        rate = data.get("result")
        if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
            raise FxProviderError("Invalid exchange rate response")
        return float(rate)


def stored_rate_key(from_currency: str, to_currency: str) -> str:
    return f"fx_rate_{from_currency}_{to_currency}"


class FxRateService:
    """
    Rate lookup with a process-wide TTL cache.

    Lookup order on a cache miss: fresh persisted rate, then provider. On
    provider failure: any cached entry (even expired), then 1.0. Rates and
    converted amounts are floats and are not rounded here.
    """

    def __init__(
        self,
        provider: RateProvider,
        session_factory: Optional[async_sessionmaker] = None,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Clock] = None,
        persist: Optional[bool] = None,
    ):
        self.provider = provider
        self.session_factory = session_factory
        self.clock = clock or time.time
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.fx_cache_ttl_seconds
        self.persist = persist if persist is not None else settings.fx_persist_rates
        self._cache: TTLCache[float] = TTLCache(self.ttl_seconds, self.clock)

    @property
    def cache(self) -> TTLCache[float]:
        return self._cache

    async def get_rate(self, from_currency: str, to_currency: str) -> float:
        """
        Get the exchange rate from cache, store or provider.

        Args:
            from_currency: Source currency (e.g., "CAD")
            to_currency: Target currency (e.g., "USD")

        Returns:
            Units of to_currency per unit of from_currency
        """
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()

        if from_currency == to_currency:
            metrics.record_fx_lookup("identity")
            return IDENTITY_RATE

        key = (from_currency, to_currency)
        cached = self._cache.get(key)
        if cached is not None:
            metrics.record_fx_lookup("cache")
            return cached

        stored = await self.get_stored_rate(from_currency, to_currency)
        if stored is not None:
            self._cache.set(key, stored)
            metrics.record_fx_lookup("store")
            return stored

        try:
            rate = await self.provider.convert(from_currency, to_currency)
        except Exception as e:
            metrics.record_fx_provider_error(type(e).__name__)
            logger.error(f"Error fetching exchange rate {from_currency} to {to_currency}: {e}")
            return self._fallback(key)

        self._cache.set(key, rate)
        self._cache.set((to_currency, from_currency), 1 / rate)
        metrics.record_fx_lookup("provider")

        if self.persist:
            await self.store_rate(from_currency, to_currency, rate)
            await self.store_rate(to_currency, from_currency, 1 / rate)

        return rate

    def _fallback(self, key: tuple[str, str]) -> float:
        entry = self._cache.get_entry(key)
        if entry is not None:
            logger.warning(
                f"Using expired FX rate {key[0]}->{key[1]} as fallback "
                f"(age {entry.age(self.clock()):.0f}s)"
            )
            metrics.record_fx_lookup("stale")
            return entry.value

        logger.warning(f"No FX rate available for {key[0]}->{key[1]}, using {IDENTITY_RATE}")
        metrics.record_fx_lookup("fallback")
        return IDENTITY_RATE

    async def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        """Convert an amount between currencies. Same currency returns amount unchanged."""
        if from_currency.upper() == to_currency.upper():
            return amount
        rate = await self.get_rate(from_currency, to_currency)
        return amount * rate

    async def store_rate(self, from_currency: str, to_currency: str, rate: float) -> None:
        """Persist a rate for reuse across restarts (best effort)."""
        if self.session_factory is None:
            return
        try:
            async with self.session_factory() as db:
                await upsert_setting(
                    db,
                    stored_rate_key(from_currency, to_currency),
                    {"rate": rate, "timestamp": self.clock()},
                )
                await db.commit()
        except Exception as e:
            logger.warning(f"Failed to persist FX rate {from_currency}->{to_currency}: {e}")

    async def get_stored_rate(self, from_currency: str, to_currency: str) -> Optional[float]:
        """Persisted rate if it is younger than the TTL, else None."""
        if self.session_factory is None:
            return None
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Setting).where(Setting.key == stored_rate_key(from_currency, to_currency))
                )
                setting = result.scalar_one_or_none()
        except Exception as e:
            logger.warning(f"Failed to read stored FX rate {from_currency}->{to_currency}: {e}")
            return None

        if setting is None or not isinstance(setting.value_jsonb, dict):
            return None

        data = setting.value_jsonb
        rate = data.get("rate")
        timestamp = data.get("timestamp")
        if not isinstance(rate, (int, float)) or not isinstance(timestamp, (int, float)):
            return None
        if self.clock() - timestamp > self.ttl_seconds:
            return None
        return float(rate)
