"""
Provider API stubs and builders shared by the test modules.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx

from socialdash.config import (
    AggregationSettings,
    AppSettings,
    DatabaseSettings,
    FacebookSettings,
    InstagramSettings,
    LinkSettings,
    RealtimeSettings,
    RedisSettings,
    Settings,
    TikTokSettings,
)
from socialdash.social import SocialServices
from socialdash.types.social import (
    OAuthTokens,
    PlatformProfile,
    SocialAccount,
    SocialPlatform,
)


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


FB_GRAPH = "https://graph.facebook.com/v18.0"
IG_GRAPH = "https://graph.instagram.com"
IG_OAUTH = "https://api.instagram.com"
TIKTOK_API = "https://open-api.tiktok.com"

Handler = Union[httpx.Response, Callable[[httpx.Request], Any]]


class ProviderStub:
    """
    Routes provider requests by method and URL (query string ignored).

    Routes hold either a fixed response or a handler; handlers may be
    async. Unrouted requests get a 500 so a missing stub never looks like
    a provider "not found".
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, handler: Handler) -> "ProviderStub":
        self.routes[(method.upper(), url)] = handler
        return self

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if self._key(r) == (method.upper(), url)]

    @staticmethod
    def _key(request: httpx.Request) -> Tuple[str, str]:
        url = request.url
        return request.method, f"{url.scheme}://{url.host}{url.path}"

    def handle(self, request: httpx.Request):
        self.requests.append(request)
        route = self.routes.get(self._key(request))
        if route is None:
            return httpx.Response(500, json={"error": {"message": f"unrouted {request.url.path}"}})
        if isinstance(route, httpx.Response):
            return route
        return route(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def make_settings(**overrides: Any) -> Settings:
    """Settings with credentials for all three platforms and memory storage."""
    values: Dict[str, Any] = {
        "facebook": FacebookSettings(facebook_app_id="fb-app", facebook_app_secret="fb-secret"),
        "instagram": InstagramSettings(instagram_app_id="ig-app", instagram_app_secret="ig-secret"),
        "tiktok": TikTokSettings(tiktok_app_id="tt-key", tiktok_app_secret="tt-secret"),
        "aggregation": AggregationSettings(social_call_timeout=2.0, social_http_timeout=2.0),
        "link": LinkSettings(app_url="http://testserver", oauth_state_ttl_seconds=600),
        "database": DatabaseSettings(database_url=None),
        "redis": RedisSettings(redis_url=None),
        "realtime": RealtimeSettings(price_tick_interval=0.01),
        "app": AppSettings(environment="development", dev_mode=True),
    }
    values.update(overrides)
    return Settings(**values)


async def link_account(
    services: SocialServices,
    user_id: str,
    platform: SocialPlatform,
    access_token: str = "tok",
    refresh_token: Optional[str] = "refresh",
    handle: Optional[str] = None,
) -> SocialAccount:
    """Store an active account as if the link flow had completed."""
    return await services.accounts.upsert_account(
        user_id=user_id,
        platform=platform,
        profile=PlatformProfile(
            id=f"{platform.value}-{user_id}",
            username=handle or f"{user_id}_{platform.value}",
        ),
        tokens=OAuthTokens(access_token=access_token, refresh_token=refresh_token),
    )
