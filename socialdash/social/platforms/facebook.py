"""
Facebook Graph API (v18.0) integration.
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

# Graph API error codes
GRAPH_INVALID_TOKEN = 190
GRAPH_INVALID_PARAMETER = 100
GRAPH_OBJECT_MISSING_SUBCODE = 33


def graph_error(body: Any) -> Dict[str, Any]:
    """The ``error`` object of a Graph API error body, or an empty dict."""
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return {}


def is_graph_token_error(response: httpx.Response, body: Any) -> bool:
    # Expired and revoked tokens come back as HTTP 400 with code 190
    if response.status_code == 401:
        return True
    return graph_error(body).get("code") == GRAPH_INVALID_TOKEN


def is_graph_not_found(response: httpx.Response, body: Any) -> bool:
    if response.status_code == 404:
        return True
    error = graph_error(body)
    return (
        error.get("code") == GRAPH_INVALID_PARAMETER
        and error.get("error_subcode") == GRAPH_OBJECT_MISSING_SUBCODE
    )


POST_FIELDS = (
    "id,message,created_time,from,permalink_url,"
    "reactions.summary(total_count),comments.summary(total_count),shares"
)
NOTIFICATION_FIELDS = "id,comments{message,created_time,from},reactions.summary(total_count)"


class FacebookPlatform(BasePlatform):
    """
    Facebook Graph API integration.

    Facebook issues no separate refresh token. A long-lived token is
    exchanged for a fresh one with ``grant_type=fb_exchange_token``, so
    the current access token doubles as the refresh token.
    """

    AUTHORIZATION_URL = "https://www.facebook.com/v18.0/dialog/oauth"
    API_BASE = "https://graph.facebook.com/v18.0"
    TOKEN_URL = f"{API_BASE}/oauth/access_token"

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(
            PLATFORM_CONFIGS[SocialPlatform.FACEBOOK],
            client_id,
            client_secret,
            redirect_uri,
            timeout=timeout,
            transport=transport,
        )

        if self.is_configured:
            logger.info("Facebook platform initialized successfully")
        else:
            logger.warning("Facebook credentials not configured")

    def _is_auth_failure(self, response: httpx.Response, body: Any) -> bool:
        return is_graph_token_error(response, body)

    def _is_not_found(self, response: httpx.Response, body: Any) -> bool:
        return is_graph_not_found(response, body)

    def _tokens_from(self, data: Dict[str, Any]) -> OAuthTokens:
        access_token = data["access_token"]
        return OAuthTokens(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or access_token,
            token_type=data.get("token_type", "bearer"),
            expires_at=self._expires_at(data.get("expires_in")),
        )

    # -------------------------------------------------------------------------
    # OAuth Methods
    # -------------------------------------------------------------------------

    async def authenticate(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for a user access token."""
        self._ensure_configured(AuthExchangeError)

        params = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        response = await self._send(
            "GET", self.TOKEN_URL, params=params, error_cls=AuthExchangeError
        )
        data = self._check_response(
            response, "authenticate", AuthExchangeError, detect_auth=False
        )
        if not data.get("access_token"):
            raise AuthExchangeError(
                "Facebook token response did not include an access token",
                platform=self.platform,
                status_code=response.status_code,
                raw_error=data,
            )
        return self._tokens_from(data)

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        """Exchange the current long-lived token for a fresh one."""
        self._ensure_configured(TokenRefreshError)

        params = {
            "grant_type": "fb_exchange_token",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "fb_exchange_token": refresh_token,
        }
        response = await self._send(
            "GET", self.TOKEN_URL, params=params, error_cls=TokenRefreshError
        )
        data = self._check_response(
            response, "refresh access token", TokenRefreshError, detect_auth=False
        )
        if not data.get("access_token"):
            raise TokenRefreshError(
                "Facebook refresh response did not include an access token",
                platform=self.platform,
                raw_error=data,
            )
        return self._tokens_from(data)

    # -------------------------------------------------------------------------
    # Account Methods
    # -------------------------------------------------------------------------

    async def get_profile(self, access_token: str) -> PlatformProfile:
        """Get the authenticated user's Facebook profile."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/me",
            params={
                "fields": "id,name,followers_count,friends_count",
                "access_token": access_token,
            },
        )
        data = self._check_response(response, "fetch profile")
        profile_id = str(self._require(data, "id", "fetch profile"))

        return PlatformProfile(
            id=profile_id,
            username=data.get("name") or profile_id,
            followers=data.get("followers_count"),
            following=data.get("friends_count"),
            profile_url=f"https://facebook.com/{profile_id}",
        )

    # -------------------------------------------------------------------------
    # Content Methods
    # -------------------------------------------------------------------------

    async def create_post(
        self,
        account: SocialAccount,
        content: PublishRequest,
    ) -> Tuple[str, str]:
        """Publish a status update to the user's feed."""
        self._ensure_publishable(content)

        body: Dict[str, Any] = {
            "message": content.content,
            "access_token": account.access_token,
        }
        links = [m.url for m in content.media]
        if links:
            body["link"] = links[0]

        response = await self._send(
            "POST", f"{self.API_BASE}/me/feed", json=body, error_cls=PublishError
        )
        data = self._check_response(response, "create post", PublishError)

        post_id = str(self._require(data, "id", "create post", PublishError))
        logger.info(f"Posted to Facebook: {post_id}")
        return post_id, f"https://facebook.com/{post_id}"

    async def delete_post(self, account: SocialAccount, post_id: str) -> None:
        """Delete a post. Already-deleted posts are treated as success."""
        response = await self._send(
            "DELETE",
            f"{self.API_BASE}/{post_id}",
            params={"access_token": account.access_token},
        )
        body = self._json(response)
        if not response.is_success and self._is_not_found(response, body):
            logger.info(f"Facebook post {post_id} already gone")
            return
        self._check_response(response, "delete post")

    def _to_unified(self, post: Dict[str, Any]) -> UnifiedPost:
        author = post.get("from") or {}
        post_id = str(post.get("id", ""))
        author_id = str(author.get("id", ""))
        return UnifiedPost(
            platform=self.platform,
            id=post_id,
            author=PostAuthor(
                name=author.get("name", ""),
                id=author_id,
                profile_url=f"https://facebook.com/{author_id}" if author_id else None,
            ),
            content=post.get("message") or "",
            created_at=self._parse_timestamp(post.get("created_time")),
            engagement=PostEngagement(
                likes=self._int(((post.get("reactions") or {}).get("summary") or {}).get("total_count")),
                shares=self._int((post.get("shares") or {}).get("count")),
                comments=self._int(((post.get("comments") or {}).get("summary") or {}).get("total_count")),
            ),
            url=post.get("permalink_url") or (f"https://facebook.com/{post_id}" if post_id else None),
        )

    async def search_posts(self, account: SocialAccount, query: str) -> List[UnifiedPost]:
        """Search public posts mentioning ``query``."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/search",
            params={
                "q": query,
                "type": "post",
                "fields": POST_FIELDS,
                "access_token": account.access_token,
            },
        )
        data = self._check_response(response, "search posts")
        return [self._to_unified(post) for post in data.get("data", [])]

    async def get_feed(self, account: SocialAccount) -> List[UnifiedPost]:
        """The user's own recent posts."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/me/posts",
            params={"fields": POST_FIELDS, "access_token": account.access_token},
        )
        data = self._check_response(response, "fetch feed")
        return [self._to_unified(post) for post in data.get("data", [])]

    async def get_notifications(self, account: SocialAccount) -> List[SocialNotification]:
        """Comments and reaction counts on the user's recent feed posts."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/me/feed",
            params={"fields": NOTIFICATION_FIELDS, "access_token": account.access_token},
        )
        data = self._check_response(response, "fetch notifications")

        notifications: List[SocialNotification] = []
        for post in data.get("data", []):
            post_id = str(post.get("id", ""))
            for comment in (post.get("comments") or {}).get("data", []):
                notifications.append(
                    SocialNotification(
                        platform=self.platform,
                        type="comment",
                        post_id=post_id,
                        username=(comment.get("from") or {}).get("name"),
                        content=comment.get("message"),
                        created_at=self._parse_timestamp(comment.get("created_time")),
                    )
                )
            total = ((post.get("reactions") or {}).get("summary") or {}).get("total_count")
            likes = self._likes_notification(post_id, total)
            if likes:
                notifications.append(likes)
        return notifications

    # -------------------------------------------------------------------------
    # Analytics Methods
    # -------------------------------------------------------------------------

    @classmethod
    def _metric_value(cls, metrics: List[Dict[str, Any]], name: str) -> Any:
        for metric in metrics:
            if metric.get("name") == name:
                values = metric.get("values") or []
                return values[0].get("value") if values else None
        return None

    async def get_post_analytics(self, account: SocialAccount, post_id: str) -> PostAnalytics:
        """
        Get insights for a post.

        Facebook reports no reach or saves per post here; reach mirrors
        impressions and engagements are the sum of reactions by type.
        """
        response = await self._send(
            "GET",
            f"{self.API_BASE}/{post_id}/insights",
            params={
                "metric": "post_impressions,post_reactions_by_type_total",
                "access_token": account.access_token,
            },
        )
        metrics = self._check_response(response, "fetch post analytics").get("data", [])

        impressions = self._int(self._metric_value(metrics, "post_impressions"))
        reactions = self._metric_value(metrics, "post_reactions_by_type_total") or {}
        engagements = (
            sum(self._int(v) for v in reactions.values())
            if isinstance(reactions, dict)
            else self._int(reactions)
        )

        return PostAnalytics(
            impressions=impressions,
            reaches=impressions,
            engagements=engagements,
            shares=0,
            saves=0,
        )

    async def get_account_analytics(self, account: SocialAccount) -> AccountAnalytics:
        """Page-level insights."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/me/insights",
            params={
                "metric": "page_impressions,page_engaged_users,page_post_engagements",
                "access_token": account.access_token,
            },
        )
        metrics = self._check_response(response, "fetch account analytics").get("data", [])

        impressions = self._float(self._metric_value(metrics, "page_impressions"))
        return AccountAnalytics(
            avg_engagement=self._float(self._metric_value(metrics, "page_post_engagements")),
            reach_rate=impressions / 100,
        )
