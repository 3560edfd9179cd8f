"""
Redis connection manager for the verification services.
Holds the per-job run lease that keeps a job single-flight across processes.
"""
from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
JOB_LEASE_KEY = "lease:job:{job_id}"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages the async Redis connection pool and the job lease helpers."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── Job lease ───────────────────────────────────────────────────────

    # Lua script: atomically delete only if we hold the lease
    _RELEASE_LEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    redis.call("del", KEYS[1])
    return 1
end
return 0
"""

    async def try_acquire_job_lease(self, job_id: str, owner: str, ttl_s: int) -> bool:
        """Attempt to take the run lease for a job using SET NX."""
        key = _fmt(JOB_LEASE_KEY, job_id=job_id)
        return bool(await self.client.set(key, owner, nx=True, ex=ttl_s))

    async def release_job_lease(self, job_id: str, owner: str) -> bool:
        """Atomically release the lease only if we still hold it."""
        key = _fmt(JOB_LEASE_KEY, job_id=job_id)
        result = await self.client.eval(self._RELEASE_LEASE_SCRIPT, 1, key, owner)
        return bool(result)
