"""
Platform registry: one constructed client per platform, assembled at startup.
"""

import logging
from typing import Dict, Iterable, List, Optional, Union

import httpx

from socialdash.config import Settings
from socialdash.exceptions import UnknownPlatformError
from socialdash.types.social import SocialPlatform

from .platforms import BasePlatform, FacebookPlatform, InstagramPlatform, TikTokPlatform

logger = logging.getLogger(__name__)


class PlatformRegistry:
    """
    Maps a platform identifier to its single client instance.

    Lookups of an unregistered identifier raise ``UnknownPlatformError``;
    that is a wiring bug, so it is logged at CRITICAL.
    """

    def __init__(self, clients: Optional[Iterable[BasePlatform]] = None) -> None:
        self._clients: Dict[SocialPlatform, BasePlatform] = {}
        for client in clients or ():
            self.register(client)

    def register(self, client: BasePlatform) -> None:
        """Register a client under its platform. Re-registering replaces it."""
        if client.platform in self._clients:
            logger.warning(f"Replacing registered client for {client.platform.value}")
        self._clients[client.platform] = client

    def get(self, platform: Union[SocialPlatform, str]) -> BasePlatform:
        """
        Get the client for a platform.

        Args:
            platform: A SocialPlatform or its string value

        Raises:
            UnknownPlatformError: The identifier is not a registered platform
        """
        try:
            key = SocialPlatform(platform)
        except ValueError:
            key = None

        client = self._clients.get(key) if key is not None else None
        if client is None:
            logger.critical(
                f"Lookup of unregistered platform '{platform}'",
                extra={"registered": [p.value for p in self._clients]},
            )
            raise UnknownPlatformError(platform)
        return client

    def platforms(self) -> List[SocialPlatform]:
        """Registered platform identifiers, in registration order."""
        return list(self._clients)

    def __contains__(self, platform: object) -> bool:
        try:
            return SocialPlatform(platform) in self._clients
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._clients)


def build_registry(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PlatformRegistry:
    """
    Construct every platform client from configuration.

    All three platforms are always registered; unconfigured ones fail
    with a PlatformError on use rather than disappearing from lookups.
    """
    timeout = settings.aggregation.social_http_timeout
    link = settings.link

    def secret(value) -> Optional[str]:
        return value.get_secret_value() if value is not None else None

    registry = PlatformRegistry(
        [
            FacebookPlatform(
                settings.facebook.facebook_app_id,
                secret(settings.facebook.facebook_app_secret),
                link.redirect_uri(SocialPlatform.FACEBOOK),
                timeout=timeout,
                transport=transport,
            ),
            InstagramPlatform(
                settings.instagram.instagram_app_id,
                secret(settings.instagram.instagram_app_secret),
                link.redirect_uri(SocialPlatform.INSTAGRAM),
                timeout=timeout,
                transport=transport,
            ),
            TikTokPlatform(
                settings.tiktok.tiktok_app_id,
                secret(settings.tiktok.tiktok_app_secret),
                link.redirect_uri(SocialPlatform.TIKTOK),
                timeout=timeout,
                transport=transport,
            ),
        ]
    )

    logger.info(
        "Platform registry built",
        extra={"configured": [p.value for p in settings.configured_platforms]},
    )
    return registry
