"""
TikTok Open API integration.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from socialdash.types.social import (
    PLATFORM_CONFIGS,
    AccountAnalytics,
    OAuthTokens,
    PlatformProfile,
    PostAnalytics,
    PostAuthor,
    PostEngagement,
    PublishRequest,
    SocialAccount,
    SocialNotification,
    SocialPlatform,
    UnifiedPost,
)

from .base import (
    AuthExchangeError,
    BasePlatform,
    PublishError,
    TokenRefreshError,
)

logger = logging.getLogger(__name__)

INVALID_TOKEN_CODES = {"access_token_invalid", "invalid_token", "token_expired"}
NOT_FOUND_CODES = {"video_not_found", "not_found"}


class TikTokPlatform(BasePlatform):
    """
    TikTok Open API integration.

    TikTok uses ``client_key`` where other providers use ``client_id``.
    Responses are sometimes wrapped in a ``data`` envelope; both shapes
    are accepted.
    """

    AUTHORIZATION_URL = "https://open-api.tiktok.com/platform/oauth/connect/"
    API_BASE = "https://open-api.tiktok.com"
    TOKEN_URL = f"{API_BASE}/oauth/access_token/"
    REFRESH_URL = f"{API_BASE}/oauth/refresh_token/"

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(
            PLATFORM_CONFIGS[SocialPlatform.TIKTOK],
            client_id,
            client_secret,
            redirect_uri,
            timeout=timeout,
            transport=transport,
        )

        if self.is_configured:
            logger.info("TikTok platform initialized successfully")
        else:
            logger.warning("TikTok credentials not configured")

    @staticmethod
    def _unwrap(payload: Any) -> Dict[str, Any]:
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            return payload["data"]
        return payload if isinstance(payload, dict) else {}

    def _error_code(self, body: Any) -> Optional[str]:
        code, _ = self._error_details(body)
        return code

    def _is_auth_failure(self, response: httpx.Response, body: Any) -> bool:
        return response.status_code == 401 or self._error_code(body) in INVALID_TOKEN_CODES

    def _is_not_found(self, response: httpx.Response, body: Any) -> bool:
        return response.status_code == 404 or self._error_code(body) in NOT_FOUND_CODES

    def _auth_headers(self, account: SocialAccount) -> Dict[str, str]:
        return {"Authorization": f"Bearer {account.access_token}"}

    def _authorization_params(self, state: str, scopes: List[str]) -> Dict[str, str]:
        params = super()._authorization_params(state, scopes)
        params["client_key"] = params.pop("client_id")
        return params

    def _tokens_from(self, payload: Any, error_cls, fallback_refresh: Optional[str] = None) -> OAuthTokens:
        data = self._unwrap(payload)
        if not data.get("access_token"):
            raise error_cls(
                "TikTok token response did not include an access token",
                platform=self.platform,
                raw_error=payload,
            )
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_at=self._expires_at(data.get("expires_in")),
            scope=data.get("scope"),
        )

    # -------------------------------------------------------------------------
    # OAuth Methods
    # -------------------------------------------------------------------------

    async def authenticate(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for access and refresh tokens."""
        self._ensure_configured(AuthExchangeError)

        data = {
            "client_key": self._client_id,
            "client_secret": self._client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }
        response = await self._send(
            "POST", self.TOKEN_URL, data=data, error_cls=AuthExchangeError
        )
        payload = self._check_response(
            response, "authenticate", AuthExchangeError, detect_auth=False
        )
        return self._tokens_from(payload, AuthExchangeError)

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        """Refresh an access token; TikTok may rotate the refresh token."""
        self._ensure_configured(TokenRefreshError)

        data = {
            "client_key": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        response = await self._send(
            "POST", self.REFRESH_URL, data=data, error_cls=TokenRefreshError
        )
        payload = self._check_response(
            response, "refresh access token", TokenRefreshError, detect_auth=False
        )
        return self._tokens_from(payload, TokenRefreshError, fallback_refresh=refresh_token)

    # -------------------------------------------------------------------------
    # Account Methods
    # -------------------------------------------------------------------------

    async def get_profile(self, access_token: str) -> PlatformProfile:
        """Get the authenticated TikTok user."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/user/info/",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        payload = self._unwrap(self._check_response(response, "fetch profile"))
        user = payload.get("user") or payload

        user_id = str(self._require(user, "id", "fetch profile"))
        handle = user.get("unique_id") or user.get("display_name") or user_id
        return PlatformProfile(
            id=user_id,
            username=handle,
            followers=user.get("follower_count"),
            following=user.get("following_count"),
            profile_url=f"https://www.tiktok.com/@{handle}",
        )

    # -------------------------------------------------------------------------
    # Content Methods
    # -------------------------------------------------------------------------

    async def create_post(
        self,
        account: SocialAccount,
        content: PublishRequest,
    ) -> Tuple[str, str]:
        """Share a video by URL."""
        self._ensure_publishable(content)

        video = next(m for m in content.media if m.type == "video")
        response = await self._send(
            "POST",
            f"{self.API_BASE}/share/video/upload/",
            headers=self._auth_headers(account),
            json={"video_url": video.url, "description": content.content},
            error_cls=PublishError,
        )
        data = self._unwrap(self._check_response(response, "create post", PublishError))

        video_id = data.get("video_id") or data.get("share_id")
        if not video_id:
            raise PublishError(
                "TikTok did not return a video id",
                platform=self.platform,
                raw_error=data,
            )

        video_id = str(video_id)
        logger.info(f"Posted to TikTok: {video_id}")
        return video_id, f"https://www.tiktok.com/@{account.handle}/video/{video_id}"

    async def delete_post(self, account: SocialAccount, post_id: str) -> None:
        """Delete a video. Already-deleted videos are treated as success."""
        response = await self._send(
            "POST",
            f"{self.API_BASE}/video/delete/",
            headers=self._auth_headers(account),
            json={"video_id": post_id},
        )
        body = self._json(response)
        if not response.is_success and self._is_not_found(response, body):
            logger.info(f"TikTok video {post_id} already gone")
            return
        self._check_response(response, "delete post")

    def _to_unified(self, video: Dict[str, Any]) -> UnifiedPost:
        author = video.get("author") or {}
        handle = author.get("unique_id") or ""
        video_id = str(video.get("id") or video.get("video_id") or "")
        return UnifiedPost(
            platform=self.platform,
            id=video_id,
            author=PostAuthor(
                name=author.get("nickname") or handle,
                id=str(author.get("id", "")),
                profile_url=f"https://www.tiktok.com/@{handle}" if handle else None,
            ),
            content=video.get("desc") or video.get("video_description") or "",
            created_at=self._parse_timestamp(video.get("create_time")),
            engagement=PostEngagement(
                likes=self._int(video.get("like_count")),
                shares=self._int(video.get("share_count")),
                comments=self._int(video.get("comment_count")),
            ),
            url=video.get("share_url")
            or (f"https://www.tiktok.com/@{handle}/video/{video_id}" if handle and video_id else None),
        )

    async def search_posts(self, account: SocialAccount, query: str) -> List[UnifiedPost]:
        """Keyword video search."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/video/search/",
            headers=self._auth_headers(account),
            params={"keyword": query},
        )
        data = self._unwrap(self._check_response(response, "search videos"))
        return [self._to_unified(video) for video in data.get("videos", [])]

    async def get_feed(self, account: SocialAccount) -> List[UnifiedPost]:
        """The account's own recent videos."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/user/videos/",
            headers=self._auth_headers(account),
        )
        data = self._unwrap(self._check_response(response, "fetch feed"))

        posts = []
        for video in data.get("videos", []):
            video.setdefault(
                "author",
                {
                    "nickname": account.handle,
                    "unique_id": account.handle,
                    "id": account.platform_account_id,
                },
            )
            posts.append(self._to_unified(video))
        return posts

    async def get_notifications(self, account: SocialAccount) -> List[SocialNotification]:
        """The account's notification list: comments, likes and other activity."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/notifications/list/",
            headers=self._auth_headers(account),
        )
        data = self._unwrap(self._check_response(response, "fetch notifications"))

        notifications = []
        for item in data.get("notifications", []):
            user = item.get("user") or {}
            notifications.append(
                SocialNotification(
                    platform=self.platform,
                    type=str(item.get("type") or "activity"),
                    post_id=str(item.get("video_id") or ""),
                    username=user.get("unique_id") or user.get("nickname"),
                    content=item.get("text") or item.get("content"),
                    count=self._int(item.get("count")),
                    created_at=self._parse_timestamp(item.get("create_time")),
                )
            )
        return notifications

    # -------------------------------------------------------------------------
    # Analytics Methods
    # -------------------------------------------------------------------------

    async def get_post_analytics(self, account: SocialAccount, post_id: str) -> PostAnalytics:
        """Video stats. Views are reported as impressions, bookmarks as saves."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/video/data/",
            headers=self._auth_headers(account),
            params={"video_id": post_id},
        )
        data = self._unwrap(self._check_response(response, "fetch post analytics"))
        stats = data.get("stats") or {}

        return PostAnalytics(
            impressions=self._int(stats.get("view_count")),
            reaches=self._int(stats.get("reach_count")),
            engagements=self._int(stats.get("engagement_count")),
            shares=self._int(stats.get("share_count")),
            saves=self._int(stats.get("bookmark_count")),
        )

    async def get_account_analytics(self, account: SocialAccount) -> AccountAnalytics:
        """Account stats including category mix and audience demographics."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/user/stats/",
            headers=self._auth_headers(account),
        )
        data = self._unwrap(self._check_response(response, "fetch account analytics"))
        stats = data.get("stats") or {}

        followers = self._int(stats.get("follower_count"))
        return AccountAnalytics(
            followers=followers,
            following=self._int(stats.get("following_count")),
            posts=self._int(stats.get("video_count")),
            avg_engagement=self._float(stats.get("engagement_rate")),
            reach_rate=self._float(stats.get("reach_count")) / (followers or 1),
            top_post_types=stats.get("video_categories") or {},
            audience_demo=stats.get("audience_demographics") or {},
        )
