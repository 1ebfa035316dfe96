"""Redis-based per-entity-type lock around sync fetch runs."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

import redis.asyncio as redis

from catalog_engine.config import settings

logger = logging.getLogger(__name__)

LOCK_KEY_TEMPLATE = "sync:{entity_type}:lock"

# Delete the lock only if the stored token matches.
# Returns: 0 = not found/already released, 1 = deleted, 2 = mismatch
RELEASE_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 2
end

if data.token == ARGV[1] then
    redis.call('DEL', KEYS[1])
    return 1
else
    return 2
end
"""


def lock_key(entity_type: str) -> str:
    return LOCK_KEY_TEMPLATE.format(entity_type=entity_type)


class SyncLockManager:
    """
    Mutual exclusion for fetch runs targeting the same entity type.

    Features:
    - SET NX EX acquisition, so a crashed holder frees the lock after the TTL
    - Token-based ownership check on release
    - Lock info retrieval for diagnostics
    """

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    async def acquire(
        self,
        entity_type: str,
        job_id: int,
        ttl_seconds: Optional[int] = None,
    ) -> Optional[str]:
        """
        Acquire the lock for an entity type.

        Args:
            entity_type: Entity type being fetched
            job_id: Sync job holding the lock (diagnostics only)
            ttl_seconds: Lock expiry, defaults to settings.sync_lock_ttl_seconds

        Returns:
            Token string if acquired, None if another run holds it
        """
        redis_client = await self._get_redis()
        token = uuid4().hex
        value = json.dumps({
            "job_id": job_id,
            "token": token,
            "started_at": datetime.utcnow().isoformat(),
        })

        acquired = await redis_client.set(
            lock_key(entity_type),
            value,
            nx=True,
            ex=ttl_seconds or settings.sync_lock_ttl_seconds,
        )
        if acquired:
            logger.info(f"Acquired sync lock for {entity_type} (job {job_id})")
            return token

        info = await self.get_lock_info(entity_type)
        logger.info(
            f"Sync lock for {entity_type} already held by job "
            f"{info.get('job_id') if info else 'unknown'}"
        )
        return None

    async def release(self, entity_type: str, token: str) -> bool:
        """Release the lock if the token still owns it."""
        redis_client = await self._get_redis()
        try:
            result = await redis_client.eval(RELEASE_SCRIPT, 1, lock_key(entity_type), token)
        except Exception as e:
            logger.error(f"Error releasing sync lock for {entity_type}: {e}")
            return False

        if result == 2:
            logger.warning(f"Attempted to release sync lock for {entity_type} with a stale token")
            return False
        return True

    async def get_lock_info(self, entity_type: str) -> Optional[Dict[str, Any]]:
        """Current holder of the lock, or None."""
        redis_client = await self._get_redis()
        raw = await redis_client.get(lock_key(entity_type))
        if not raw:
            return None
        try:
            info = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Sync lock for {entity_type} has an invalid value: {raw}")
            return {}
        info["ttl_seconds"] = await redis_client.ttl(lock_key(entity_type))
        return info

    async def force_unlock(self, entity_type: str) -> bool:
        """Drop the lock without ownership check (admin recovery)."""
        redis_client = await self._get_redis()
        await redis_client.delete(lock_key(entity_type))
        logger.warning(f"Force-cleared sync lock for {entity_type}")
        return True
