"""
Health check and root endpoints.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from socialdash.exceptions import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/")
async def root() -> Dict[str, str]:
    return {"message": "Welcome to the Social Dashboard API"}


@router.get("/health", summary="System health check")
async def health_check(request: Request) -> Dict[str, Any]:
    """
    Health check endpoint for monitoring and load balancers.

    Reports database and Redis connectivity, which platforms have app
    credentials, how many accounts are linked and the realtime subscriber
    count. Storage that is not configured falls back to memory and does
    not make the service unhealthy; storage that is configured but
    unreachable does.
    """
    settings = request.app.state.settings
    services = request.app.state.services
    channel = request.app.state.channel

    database = await services.database.health_check()
    redis_status = await services.redis.health_check()
    try:
        linked: Optional[int] = await services.accounts.count()
    except StorageError:
        linked = None

    degraded = any(
        component["status"] not in ("healthy", "unconfigured")
        for component in (database, redis_status)
    )
    if degraded:
        logger.warning(f"Health check degraded: database={database['status']} redis={redis_status['status']}")

    return {
        "status": "degraded" if degraded else "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.app.environment,
        "services": {
            "database": database,
            "redis": redis_status,
        },
        "platforms": {
            platform.value: platform in settings.configured_platforms
            for platform in services.registry.platforms()
        },
        "accounts": {"linked": linked},
        "realtime": {"subscribers": channel.subscriber_count},
    }
