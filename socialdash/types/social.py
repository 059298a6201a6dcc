"""
Type definitions for linked social accounts, unified posts and analytics.

Provides models for:
- Platform identifiers, OAuth tokens and linked accounts
- Provider-agnostic posts and publish requests/results
- Post analytics and append-only account analytics snapshots
- Partial-failure records returned by aggregation operations
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class SocialPlatform(str, Enum):
    """Supported social media platforms."""

    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"


# -----------------------------------------------------------------------------
# OAuth and Account Models
# -----------------------------------------------------------------------------


class OAuthTokens(BaseModel):
    """Token pair returned by a provider's token endpoint."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None


class PlatformProfile(BaseModel):
    """Identity of the linked account as reported by the provider."""

    id: str
    username: str
    followers: Optional[int] = None
    following: Optional[int] = None
    profile_url: Optional[str] = None


class SocialAccount(BaseModel):
    """A linked (user, platform) account and its stored credentials."""

    id: str
    user_id: str
    platform: SocialPlatform
    platform_account_id: str
    handle: str
    access_token: str
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LinkedAccountView(BaseModel):
    """Token-free view of a linked account for API responses."""

    id: str
    platform: SocialPlatform
    platform_account_id: str
    handle: str
    is_active: bool
    connected_at: datetime

    @classmethod
    def from_account(cls, account: SocialAccount) -> "LinkedAccountView":
        return cls(
            id=account.id,
            platform=account.platform,
            platform_account_id=account.platform_account_id,
            handle=account.handle,
            is_active=account.is_active,
            connected_at=account.created_at,
        )


class LinkStart(BaseModel):
    """Authorization URL handed to the browser to begin linking."""

    authorization_url: str
    state: str


class LinkOutcome(BaseModel):
    """Terminal state of a link attempt."""

    platform: SocialPlatform
    linked: bool
    account: Optional[SocialAccount] = None
    error: Optional[str] = None


# -----------------------------------------------------------------------------
# Post Models
# -----------------------------------------------------------------------------


class PostAuthor(BaseModel):
    """Author of a unified post."""

    name: str = ""
    id: str = ""
    profile_url: Optional[str] = None


class PostEngagement(BaseModel):
    """Engagement counts; metrics a provider does not expose stay at zero."""

    likes: int = 0
    shares: int = 0
    comments: int = 0


class UnifiedPost(BaseModel):
    """Provider-agnostic projection of a social post."""

    platform: SocialPlatform
    id: str = ""
    author: PostAuthor = Field(default_factory=PostAuthor)
    content: str = ""
    created_at: datetime
    engagement: PostEngagement = Field(default_factory=PostEngagement)
    url: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken to be UTC so posts sort together."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class MediaAttachment(BaseModel):
    """Media reference attached to a publish request."""

    type: Literal["image", "video"] = "image"
    url: str
    alt_text: Optional[str] = None


class PublishRequest(BaseModel):
    """Content to publish and the platforms to publish it on."""

    content: str = Field(..., min_length=1, max_length=63206)
    media: List[MediaAttachment] = Field(default_factory=list)
    platforms: Optional[List[SocialPlatform]] = None

    @field_validator("content")
    @classmethod
    def validate_content_not_empty(cls, v: str) -> str:
        """Ensure content is not just whitespace."""
        if not v.strip():
            raise ValueError("Post content cannot be empty or whitespace only")
        return v

    @field_validator("platforms")
    @classmethod
    def dedupe_platforms(
        cls, v: Optional[List[SocialPlatform]]
    ) -> Optional[List[SocialPlatform]]:
        if v is None:
            return v
        return list(dict.fromkeys(v))


class PlatformPostResult(BaseModel):
    """Outcome of one platform's publish or delete attempt."""

    platform: SocialPlatform
    success: bool
    post_id: Optional[str] = None
    url: Optional[str] = None
    error_type: Optional[str] = None
    reason: Optional[str] = None


class PartialAggregationFailure(BaseModel):
    """A platform that errored or timed out during an aggregation round."""

    platform: SocialPlatform
    error_type: str
    reason: str


class MentionsResult(BaseModel):
    """Merged posts plus the platforms that could not contribute."""

    posts: List[UnifiedPost] = Field(default_factory=list)
    failures: List[PartialAggregationFailure] = Field(default_factory=list)


class SocialNotification(BaseModel):
    """
    Activity on the account's own posts.

    ``type`` is ``comment`` for a single comment or ``likes`` for a post's
    running like count; TikTok may report other kinds, passed through as is.
    Providers that give no timestamp (like counts) sort last.
    """

    platform: SocialPlatform
    type: str
    post_id: str = ""
    username: Optional[str] = None
    content: Optional[str] = None
    count: int = 0
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class NotificationsResult(BaseModel):
    """Merged notifications plus the platforms that could not contribute."""

    notifications: List[SocialNotification] = Field(default_factory=list)
    failures: List[PartialAggregationFailure] = Field(default_factory=list)


class PublishResult(BaseModel):
    """One result per targeted platform."""

    results: List[PlatformPostResult] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Analytics Models
# -----------------------------------------------------------------------------


class PostAnalytics(BaseModel):
    """Per-post metrics. Unsupported metrics are reported as zero."""

    impressions: int = 0
    reaches: int = 0
    engagements: int = 0
    shares: int = 0
    saves: int = 0

    @field_validator("impressions", "reaches", "engagements", "shares", "saves", mode="before")
    @classmethod
    def none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


class AccountAnalytics(BaseModel):
    """Account-level metrics as returned by a platform client."""

    followers: int = 0
    following: int = 0
    posts: int = 0
    avg_engagement: float = 0.0
    reach_rate: float = 0.0
    top_post_types: Dict[str, float] = Field(default_factory=dict)
    audience_demo: Dict[str, float] = Field(default_factory=dict)


class AnalyticsSnapshot(AccountAnalytics):
    """Point-in-time account metrics. Append-only, never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str
    account_id: str
    user_id: str
    platform: SocialPlatform
    captured_at: datetime = Field(default_factory=utcnow)


class AnalyticsResult(BaseModel):
    """Snapshots for the accounts that answered, plus failures."""

    snapshots: List[AnalyticsSnapshot] = Field(default_factory=list)
    failures: List[PartialAggregationFailure] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Platform Configuration
# -----------------------------------------------------------------------------


@dataclass
class PlatformConfig:
    """Static limits and OAuth details for a social media platform."""

    platform: SocialPlatform
    name: str
    max_text_length: int
    max_media_count: int
    supported_media_types: List[str]
    requires_media: bool = False
    required_media_type: Optional[str] = None
    oauth_scopes: List[str] = field(default_factory=list)
    scope_separator: str = ","


PLATFORM_CONFIGS: Dict[SocialPlatform, PlatformConfig] = {
    SocialPlatform.FACEBOOK: PlatformConfig(
        platform=SocialPlatform.FACEBOOK,
        name="Facebook",
        max_text_length=63206,
        max_media_count=10,
        supported_media_types=["image", "video"],
        oauth_scopes=[
            "public_profile",
            "email",
            "pages_show_list",
            "pages_read_engagement",
            "pages_manage_posts",
        ],
    ),
    SocialPlatform.INSTAGRAM: PlatformConfig(
        platform=SocialPlatform.INSTAGRAM,
        name="Instagram",
        max_text_length=2200,
        max_media_count=10,
        supported_media_types=["image"],
        requires_media=True,
        required_media_type="image",
        oauth_scopes=[
            "instagram_basic",
            "instagram_content_publish",
            "instagram_manage_insights",
        ],
    ),
    SocialPlatform.TIKTOK: PlatformConfig(
        platform=SocialPlatform.TIKTOK,
        name="TikTok",
        max_text_length=2200,
        max_media_count=1,
        supported_media_types=["video"],
        requires_media=True,
        required_media_type="video",
        oauth_scopes=["user.info.basic", "video.list", "video.upload"],
    ),
}
