"""
Async Postgres helpers.

A ``Database`` owns one asyncpg pool. When no ``DATABASE_URL`` is
configured, the stores built on top of it run in memory instead.
"""

from __future__ import annotations

import logging
from typing import Optional

import asyncpg

from socialdash.config import DatabaseSettings

logger = logging.getLogger(__name__)


class Database:
    """Lazily created asyncpg pool plus thin query helpers."""

    def __init__(self, settings: DatabaseSettings) -> None:
        self._settings = settings
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    async def get_pool(self) -> Optional[asyncpg.Pool]:
        if self._pool is not None:
            return self._pool

        if not self.is_configured:
            return None

        # PgBouncer poolers break prepared statements; disable the cache for both
        # direct and pooled URLs.
        self._pool = await asyncpg.create_pool(
            dsn=self._settings.database_url,
            min_size=self._settings.database_pool_min_size,
            max_size=self._settings.database_pool_max_size,
            statement_cache_size=0,
        )

        logger.info(
            "Postgres pool initialized (min=%s max=%s)",
            self._settings.database_pool_min_size,
            self._settings.database_pool_max_size,
        )
        return self._pool

    async def fetchrow(self, query: str, *args):
        pool = await self.get_pool()
        if not pool:
            return None
        async with pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetch(self, query: str, *args):
        pool = await self.get_pool()
        if not pool:
            return []
        async with pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def execute(self, query: str, *args):
        pool = await self.get_pool()
        if not pool:
            return None
        async with pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def health_check(self) -> dict:
        if not self.is_configured:
            return {"status": "unconfigured", "connected": False, "backend": "memory"}
        try:
            await self.fetchrow("SELECT 1")
            return {"status": "healthy", "connected": True, "backend": "postgres"}
        except (OSError, asyncpg.PostgresError) as e:
            return {
                "status": "unhealthy",
                "connected": False,
                "backend": "postgres",
                "error": type(e).__name__,
            }

    async def close(self) -> None:
        """Close the pool (used during application shutdown)."""
        if self._pool is None:
            return
        try:
            await self._pool.close()
        finally:
            self._pool = None
