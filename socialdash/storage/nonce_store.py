"""
OAuth state nonce storage with Redis backend and in-memory fallback.

One pending link per session: issuing a new nonce replaces the previous
one. Consuming is single-use (Redis GETDEL / dict pop).
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from pydantic import BaseModel, ValidationError

from socialdash.types.social import SocialPlatform

from .redis_client import RedisClient

logger = logging.getLogger(__name__)

NONCE_PREFIX = "social:oauth_state:"

DEFAULT_TTL = 600


class PendingLink(BaseModel):
    """A started-but-not-completed link attempt."""

    nonce: str
    user_id: str
    platform: SocialPlatform


class NonceStore:
    """
    Redis-backed OAuth state storage with fallback to in-memory.
    """

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        ttl_seconds: int = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._fallback: Dict[str, Tuple[PendingLink, float]] = {}
        self._using_fallback: bool = redis_client is None

    async def _get_redis(self) -> Optional[redis.Redis]:
        if self._redis_client is None:
            return None
        client = await self._redis_client.get_client()
        self._using_fallback = client is None
        return client

    @property
    def using_fallback(self) -> bool:
        return self._using_fallback

    async def issue(self, session_id: str, pending: PendingLink) -> None:
        """Store ``pending`` for the session, superseding any earlier nonce."""
        client = await self._get_redis()

        if client:
            try:
                await client.set(
                    f"{NONCE_PREFIX}{session_id}",
                    pending.model_dump_json(),
                    ex=self.ttl_seconds,
                )
                return
            except redis.RedisError as e:
                logger.warning(f"Redis nonce issue error: {str(e)}, falling back to memory")

        self._purge_expired()
        self._fallback[session_id] = (pending, self._clock() + self.ttl_seconds)

    async def consume(self, session_id: str) -> Optional[PendingLink]:
        """
        Remove and return the session's pending link.

        Returns:
            The pending link, or None if absent, expired or already consumed
        """
        client = await self._get_redis()

        if client:
            try:
                raw = await client.getdel(f"{NONCE_PREFIX}{session_id}")
            except redis.RedisError as e:
                logger.warning(f"Redis nonce consume error: {str(e)}, falling back to memory")
            else:
                if raw is None:
                    return None
                try:
                    return PendingLink.model_validate_json(raw)
                except ValidationError:
                    logger.warning(f"Discarding malformed OAuth state for session {session_id[:8]}")
                    return None

        entry = self._fallback.pop(session_id, None)
        if entry is None:
            return None
        pending, expires_at = entry
        if self._clock() >= expires_at:
            return None
        return pending

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [sid for sid, (_, expires_at) in self._fallback.items() if now >= expires_at]
        for sid in expired:
            del self._fallback[sid]
