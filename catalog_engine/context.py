"""Process-wide service wiring.

Caches and clients are owned by one EngineContext built at startup, so
tests can build their own with an injected clock and session factory.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_engine.cache import Clock
from catalog_engine.config import settings
from catalog_engine.db.session import AsyncSessionLocal
from catalog_engine.monitor.engine import PriceMonitor
from catalog_engine.services.fx_rates import ExchangeRateHostClient, FxRateService, RateProvider
from catalog_engine.services.settings_cache import SettingsCache
from catalog_engine.services.tokens import TokenService
from catalog_engine.sync.engine import PlatformFactory, SyncJobEngine
from catalog_engine.sync.medusa_client import MedusaClient, PlatformClient, resolve_credentials
from catalog_engine.worker.sync_lock import SyncLockManager
from catalog_engine.worker.tasks import SyncJobQueue

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    session_factory: async_sessionmaker
    clock: Clock
    settings_cache: SettingsCache
    fx: FxRateService
    tokens: TokenService
    sync_engine: SyncJobEngine
    sync_queue: SyncJobQueue
    monitor: PriceMonitor
    lock_manager: Optional[SyncLockManager] = None
    _closeables: list = field(default_factory=list)

    async def close(self) -> None:
        """Stop the worker and close owned clients."""
        await self.sync_queue.stop()
        for resource in self._closeables:
            try:
                await resource.close()
            except Exception:
                logger.exception(f"Error closing {type(resource).__name__}")


def medusa_platform_factory(
    settings_cache: SettingsCache, tokens: Optional[TokenService]
) -> PlatformFactory:
    """Build a fresh Medusa client per run from the current credentials."""

    async def factory() -> tuple[PlatformClient, Optional[int]]:
        credentials = await resolve_credentials(settings_cache, tokens)
        return MedusaClient(credentials.base_url, credentials.token), credentials.token_id

    return factory


def build_context(
    session_factory: Optional[async_sessionmaker] = None,
    clock: Optional[Clock] = None,
    rate_provider: Optional[RateProvider] = None,
    platform_factory: Optional[PlatformFactory] = None,
    lock_manager: Optional[SyncLockManager] = None,
    use_lock: Optional[bool] = None,
) -> EngineContext:
    """
    Wire all services.

    Args:
        session_factory: Defaults to the application session factory
        clock: Wall clock in seconds for the caches
        rate_provider: FX provider, defaults to an exchangerate.host client
        platform_factory: Sync platform client factory, defaults to Medusa
        lock_manager: Redis lock manager for fetch runs
        use_lock: Create a lock manager when none is given (settings.sync_lock_enabled)
    """
    session_factory = session_factory or AsyncSessionLocal
    clock = clock or time.time

    closeables = []
    if rate_provider is None:
        rate_provider = ExchangeRateHostClient()
        closeables.append(rate_provider)

    use_lock = settings.sync_lock_enabled if use_lock is None else use_lock
    if lock_manager is None and use_lock:
        lock_manager = SyncLockManager()
    if lock_manager is not None:
        closeables.append(lock_manager)

    settings_cache = SettingsCache(session_factory, clock=clock)
    fx = FxRateService(rate_provider, session_factory=session_factory, clock=clock)
    tokens = TokenService(session_factory)
    sync_engine = SyncJobEngine(
        session_factory,
        platform_factory or medusa_platform_factory(settings_cache, tokens),
        tokens=tokens,
        lock_manager=lock_manager,
    )
    monitor = PriceMonitor(session_factory, fx=fx, settings_cache=settings_cache)

    return EngineContext(
        session_factory=session_factory,
        clock=clock,
        settings_cache=settings_cache,
        fx=fx,
        tokens=tokens,
        sync_engine=sync_engine,
        sync_queue=SyncJobQueue(sync_engine),
        monitor=monitor,
        lock_manager=lock_manager,
        _closeables=closeables,
    )
