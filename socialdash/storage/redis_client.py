"""
Lazily connected Redis handle for OAuth state nonces.

An unreachable server is never fatal: ``get_client`` returns None and the
nonce store keeps state in process memory instead. After a failed connect
the handle waits ``retry_after`` seconds before dialing again, so a dead
Redis does not add a connect timeout to every link attempt.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

import redis.asyncio as redis

from socialdash.config import RedisSettings

logger = logging.getLogger(__name__)


class RedisClient:
    """Owns at most one ``redis.asyncio.Redis`` connection pool."""

    def __init__(
        self,
        settings: RedisSettings,
        retry_after: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.redis_url = settings.redis_url
        self.retry_after = retry_after
        self._clock = clock
        self._client: Optional[redis.Redis] = None
        self._connect_lock = asyncio.Lock()
        self._failed_at: Optional[float] = None
        self._last_error: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.redis_url)

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def _in_cooldown(self) -> bool:
        return self._failed_at is not None and self._clock() - self._failed_at < self.retry_after

    async def get_client(self) -> Optional[redis.Redis]:
        """Return a pinged client, or None when unconfigured or unreachable."""
        if self._client is not None or not self.is_configured or self._in_cooldown():
            return self._client

        async with self._connect_lock:
            if self._client is None and not self._in_cooldown():
                await self._connect()
        return self._client

    async def _connect(self) -> None:
        candidate = redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=5.0,
            socket_timeout=5.0,
        )
        try:
            await candidate.ping()
        except redis.RedisError as e:
            self._failed_at = self._clock()
            self._last_error = str(e)
            logger.warning("Redis unreachable, OAuth state stays in memory: %s", e)
            await candidate.aclose()
            return

        self._client = candidate
        self._failed_at = None
        self._last_error = None
        logger.info("Connected to Redis")

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except redis.RedisError as e:
            logger.warning("Redis close failed: %s", e)

    async def health_check(self) -> Dict[str, object]:
        """Status for /health: unconfigured, unavailable, healthy or unhealthy."""
        if not self.is_configured:
            return {"status": "unconfigured", "connected": False, "backend": "memory"}

        client = await self.get_client()
        if client is None:
            return {
                "status": "unavailable",
                "connected": False,
                "backend": "memory",
                "error": self._last_error or "Redis not reachable",
            }

        try:
            await client.ping()
        except redis.RedisError as e:
            self._last_error = str(e)
            return {"status": "unhealthy", "connected": False, "error": f"Ping failed: {e}"}
        return {"status": "healthy", "connected": True, "backend": "redis"}
