"""
Instagram Graph API integration.

Publishing is a two-step container flow: create a media container from an
image URL, then publish the container.
"""

import logging
from collections import Counter
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
from .facebook import is_graph_not_found, is_graph_token_error

logger = logging.getLogger(__name__)

MEDIA_FIELDS = "id,caption,media_type,permalink,timestamp,like_count,comments_count"


class InstagramPlatform(BasePlatform):
    """
    Instagram Graph API integration.

    Long-lived Instagram tokens are refreshed with
    ``grant_type=ig_refresh_token`` against the token itself, so the
    stored refresh token is the current access token.
    """

    AUTHORIZATION_URL = "https://api.instagram.com/oauth/authorize"
    TOKEN_URL = "https://api.instagram.com/oauth/access_token"
    API_BASE = "https://graph.instagram.com"
    REFRESH_URL = f"{API_BASE}/refresh_access_token"

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(
            PLATFORM_CONFIGS[SocialPlatform.INSTAGRAM],
            client_id,
            client_secret,
            redirect_uri,
            timeout=timeout,
            transport=transport,
        )

        if self.is_configured:
            logger.info("Instagram platform initialized successfully")
        else:
            logger.warning("Instagram credentials not configured")

    def _is_auth_failure(self, response: httpx.Response, body: Any) -> bool:
        return is_graph_token_error(response, body)

    def _is_not_found(self, response: httpx.Response, body: Any) -> bool:
        return is_graph_not_found(response, body)

    # -------------------------------------------------------------------------
    # OAuth Methods
    # -------------------------------------------------------------------------

    async def authenticate(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for an access token."""
        self._ensure_configured(AuthExchangeError)

        data = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        response = await self._send(
            "POST", self.TOKEN_URL, data=data, error_cls=AuthExchangeError
        )
        token_data = self._check_response(
            response, "authenticate", AuthExchangeError, detect_auth=False
        )
        if not token_data.get("access_token"):
            raise AuthExchangeError(
                "Instagram token response did not include an access token",
                platform=self.platform,
                status_code=response.status_code,
                raw_error=token_data,
            )

        access_token = token_data["access_token"]
        return OAuthTokens(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token") or access_token,
            expires_at=self._expires_at(token_data.get("expires_in")),
        )

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        """Refresh a long-lived access token."""
        response = await self._send(
            "GET",
            self.REFRESH_URL,
            params={"grant_type": "ig_refresh_token", "access_token": refresh_token},
            error_cls=TokenRefreshError,
        )
        token_data = self._check_response(
            response, "refresh access token", TokenRefreshError, detect_auth=False
        )
        if not token_data.get("access_token"):
            raise TokenRefreshError(
                "Instagram refresh response did not include an access token",
                platform=self.platform,
                raw_error=token_data,
            )

        access_token = token_data["access_token"]
        return OAuthTokens(
            access_token=access_token,
            refresh_token=access_token,
            token_type=token_data.get("token_type", "bearer"),
            expires_at=self._expires_at(token_data.get("expires_in")),
        )

    # -------------------------------------------------------------------------
    # Account Methods
    # -------------------------------------------------------------------------

    async def get_profile(self, access_token: str) -> PlatformProfile:
        """Get the authenticated Instagram account."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/me",
            params={
                "fields": "id,username,followers_count,follows_count",
                "access_token": access_token,
            },
        )
        data = self._check_response(response, "fetch profile")

        profile_id = str(self._require(data, "id", "fetch profile"))
        username = data.get("username") or profile_id
        return PlatformProfile(
            id=profile_id,
            username=username,
            followers=data.get("followers_count"),
            following=data.get("follows_count"),
            profile_url=f"https://instagram.com/{username}",
        )

    # -------------------------------------------------------------------------
    # Content Methods
    # -------------------------------------------------------------------------

    async def create_post(
        self,
        account: SocialAccount,
        content: PublishRequest,
    ) -> Tuple[str, str]:
        """Create an image container and publish it."""
        self._ensure_publishable(content)

        image = next(m for m in content.media if m.type == "image")

        container_response = await self._send(
            "POST",
            f"{self.API_BASE}/me/media",
            json={
                "image_url": image.url,
                "caption": content.content,
                "access_token": account.access_token,
            },
            error_cls=PublishError,
        )
        container = self._check_response(
            container_response, "upload media", PublishError
        )

        publish_response = await self._send(
            "POST",
            f"{self.API_BASE}/me/media_publish",
            json={
                "creation_id": self._require(container, "id", "upload media", PublishError),
                "access_token": account.access_token,
            },
            error_cls=PublishError,
        )
        data = self._check_response(publish_response, "create post", PublishError)

        post_id = str(self._require(data, "id", "create post", PublishError))
        logger.info(f"Posted to Instagram: {post_id}")
        return post_id, f"https://instagram.com/p/{post_id}"

    async def delete_post(self, account: SocialAccount, post_id: str) -> None:
        """Delete a media object. Already-deleted media is treated as success."""
        response = await self._send(
            "DELETE",
            f"{self.API_BASE}/{post_id}",
            params={"access_token": account.access_token},
        )
        body = self._json(response)
        if not response.is_success and self._is_not_found(response, body):
            logger.info(f"Instagram media {post_id} already gone")
            return
        self._check_response(response, "delete post")

    def _to_unified(
        self,
        media: Dict[str, Any],
        author: Optional[PostAuthor] = None,
    ) -> UnifiedPost:
        username = media.get("username")
        if author is None:
            author = PostAuthor(
                name=username or "",
                profile_url=f"https://instagram.com/{username}" if username else None,
            )
        return UnifiedPost(
            platform=self.platform,
            id=str(media.get("id", "")),
            author=author,
            content=media.get("caption") or "",
            created_at=self._parse_timestamp(media.get("timestamp")),
            engagement=PostEngagement(
                likes=self._int(media.get("like_count")),
                comments=self._int(media.get("comments_count")),
            ),
            url=media.get("permalink"),
        )

    async def search_posts(self, account: SocialAccount, query: str) -> List[UnifiedPost]:
        """
        Hashtag search: resolve ``query`` to a hashtag id, then read its
        recent media. An unknown hashtag yields no posts.
        """
        hashtag = query.strip().lstrip("#").replace(" ", "")
        if not hashtag:
            return []

        lookup = await self._send(
            "GET",
            f"{self.API_BASE}/ig_hashtag_search",
            params={
                "user_id": account.platform_account_id,
                "q": hashtag,
                "access_token": account.access_token,
            },
        )
        matches = self._check_response(lookup, "search hashtags").get("data", [])
        if not matches:
            return []
        hashtag_id = self._require(matches[0], "id", "search hashtags")

        response = await self._send(
            "GET",
            f"{self.API_BASE}/{hashtag_id}/recent_media",
            params={
                "user_id": account.platform_account_id,
                "fields": MEDIA_FIELDS,
                "access_token": account.access_token,
            },
        )
        data = self._check_response(response, "fetch hashtag media")
        return [self._to_unified(media) for media in data.get("data", [])]

    async def get_feed(self, account: SocialAccount) -> List[UnifiedPost]:
        """The account's own recent media."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/me/media",
            params={
                "fields": f"{MEDIA_FIELDS},username",
                "access_token": account.access_token,
            },
        )
        data = self._check_response(response, "fetch feed")

        author = PostAuthor(
            name=account.handle,
            id=account.platform_account_id,
            profile_url=f"https://instagram.com/{account.handle}",
        )
        return [self._to_unified(media, author) for media in data.get("data", [])]

    async def get_notifications(self, account: SocialAccount) -> List[SocialNotification]:
        """
        The Graph API has no notification feed for Instagram, so recent
        comments and like counts are read off the account's own media.
        """
        response = await self._send(
            "GET",
            f"{self.API_BASE}/me/media",
            params={
                "fields": "id,like_count,comments{text,timestamp,username}",
                "access_token": account.access_token,
            },
        )
        data = self._check_response(response, "fetch notifications")

        notifications: List[SocialNotification] = []
        for media in data.get("data", []):
            media_id = str(media.get("id", ""))
            for comment in (media.get("comments") or {}).get("data", []):
                notifications.append(
                    SocialNotification(
                        platform=self.platform,
                        type="comment",
                        post_id=media_id,
                        username=comment.get("username"),
                        content=comment.get("text"),
                        created_at=self._parse_timestamp(comment.get("timestamp")),
                    )
                )
            likes = self._likes_notification(media_id, media.get("like_count"))
            if likes:
                notifications.append(likes)
        return notifications

    # -------------------------------------------------------------------------
    # Analytics Methods
    # -------------------------------------------------------------------------

    @staticmethod
    def _metrics_by_name(metrics: List[Dict[str, Any]]) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for metric in metrics:
            points = metric.get("values") or []
            values[metric.get("name", "")] = points[0].get("value") if points else None
        return values

    async def get_post_analytics(self, account: SocialAccount, post_id: str) -> PostAnalytics:
        """Media insights. Shares are not exposed by Instagram and are zero."""
        response = await self._send(
            "GET",
            f"{self.API_BASE}/{post_id}/insights",
            params={
                "metric": "impressions,reach,engagement,saved",
                "access_token": account.access_token,
            },
        )
        metrics = self._metrics_by_name(
            self._check_response(response, "fetch post analytics").get("data", [])
        )

        return PostAnalytics(
            impressions=self._int(metrics.get("impressions")),
            reaches=self._int(metrics.get("reach")),
            engagements=self._int(metrics.get("engagement")),
            shares=0,
            saves=self._int(metrics.get("saved")),
        )

    async def get_account_analytics(self, account: SocialAccount) -> AccountAnalytics:
        """Daily account insights plus engagement averaged over recent media."""
        insights_response = await self._send(
            "GET",
            f"{self.API_BASE}/me/insights",
            params={
                "metric": "impressions,reach,follower_count,profile_views",
                "period": "day",
                "access_token": account.access_token,
            },
        )
        metrics = self._metrics_by_name(
            self._check_response(insights_response, "fetch account analytics").get("data", [])
        )

        media_response = await self._send(
            "GET",
            f"{self.API_BASE}/me/media",
            params={
                "fields": "id,media_type,like_count,comments_count",
                "access_token": account.access_token,
            },
        )
        media = self._check_response(media_response, "fetch media").get("data", [])

        total_engagement = sum(
            self._int(m.get("like_count")) + self._int(m.get("comments_count"))
            for m in media
        )
        type_counts = Counter(str(m.get("media_type", "UNKNOWN")).lower() for m in media)

        return AccountAnalytics(
            followers=self._int(metrics.get("follower_count")),
            following=0,
            posts=len(media),
            avg_engagement=total_engagement / (len(media) or 1),
            reach_rate=self._float(metrics.get("reach")) / 100,
            top_post_types={
                kind: count / len(media) for kind, count in type_counts.most_common()
            },
        )
