"""
Type definitions for the social dashboard.
"""

from .social import (
    PLATFORM_CONFIGS,
    AccountAnalytics,
    AnalyticsResult,
    AnalyticsSnapshot,
    LinkedAccountView,
    LinkOutcome,
    LinkStart,
    MediaAttachment,
    MentionsResult,
    NotificationsResult,
    OAuthTokens,
    PartialAggregationFailure,
    PlatformConfig,
    PlatformPostResult,
    PlatformProfile,
    PostAnalytics,
    PostAuthor,
    PostEngagement,
    PublishRequest,
    PublishResult,
    SocialAccount,
    SocialNotification,
    SocialPlatform,
    UnifiedPost,
    utcnow,
)

__all__ = [
    "PLATFORM_CONFIGS",
    "AccountAnalytics",
    "AnalyticsResult",
    "AnalyticsSnapshot",
    "LinkedAccountView",
    "LinkOutcome",
    "LinkStart",
    "MediaAttachment",
    "MentionsResult",
    "NotificationsResult",
    "OAuthTokens",
    "PartialAggregationFailure",
    "PlatformConfig",
    "PlatformPostResult",
    "PlatformProfile",
    "PostAnalytics",
    "PostAuthor",
    "PostEngagement",
    "PublishRequest",
    "PublishResult",
    "SocialAccount",
    "SocialNotification",
    "SocialPlatform",
    "UnifiedPost",
    "utcnow",
]
