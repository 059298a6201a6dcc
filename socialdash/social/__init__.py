"""
Social account integration.

This package provides:
- Provider clients for Facebook, Instagram and TikTok
- A platform registry assembled at startup
- OAuth account linking with CSRF state nonces
- Cross-platform mentions, publishing and analytics with partial failure
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from socialdash.config import Settings
from socialdash.storage import (
    AnalyticsSnapshotStore,
    Database,
    NonceStore,
    RedisClient,
    SocialAccountStore,
)

from .content_service import UnifiedContentService
from .credentials import CredentialManager
from .link_flow import AccountLinkFlow
from .registry import PlatformRegistry, build_registry

logger = logging.getLogger(__name__)


@dataclass
class SocialServices:
    """Everything the HTTP layer needs, built once per application."""

    registry: PlatformRegistry
    database: Database
    redis: RedisClient
    accounts: SocialAccountStore
    snapshots: AnalyticsSnapshotStore
    nonces: NonceStore
    credentials: CredentialManager
    link_flow: AccountLinkFlow
    content: UnifiedContentService

    async def close(self) -> None:
        await self.redis.close()
        await self.database.close()


def build_services(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SocialServices:
    """
    Wire registry, stores and services from configuration.

    Args:
        settings: Application settings
        transport: Optional httpx transport for every platform client
    """
    registry = build_registry(settings, transport=transport)
    database = Database(settings.database)
    redis_client = RedisClient(settings.redis)

    accounts = SocialAccountStore(database)
    snapshots = AnalyticsSnapshotStore(database)
    nonces = NonceStore(
        redis_client if redis_client.is_configured else None,
        ttl_seconds=settings.link.oauth_state_ttl_seconds,
    )
    credentials = CredentialManager(accounts, registry)

    services = SocialServices(
        registry=registry,
        database=database,
        redis=redis_client,
        accounts=accounts,
        snapshots=snapshots,
        nonces=nonces,
        credentials=credentials,
        link_flow=AccountLinkFlow(
            registry,
            accounts,
            nonces,
            dashboard_path=settings.link.dashboard_path,
        ),
        content=UnifiedContentService(
            registry,
            accounts,
            snapshots,
            credentials,
            call_timeout=settings.aggregation.social_call_timeout,
        ),
    )

    if accounts.using_memory:
        logger.warning("DATABASE_URL not set; linked accounts are stored in memory")
    return services


__all__ = [
    "AccountLinkFlow",
    "CredentialManager",
    "PlatformRegistry",
    "SocialServices",
    "UnifiedContentService",
    "build_registry",
    "build_services",
]
