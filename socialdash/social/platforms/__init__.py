"""
Provider clients for Facebook, Instagram and TikTok.
"""

from .base import (
    AuthExchangeError,
    BasePlatform,
    PlatformAuthError,
    PlatformError,
    PublishError,
    TokenRefreshError,
)
from .facebook import FacebookPlatform
from .instagram import InstagramPlatform
from .tiktok import TikTokPlatform

__all__ = [
    "AuthExchangeError",
    "BasePlatform",
    "FacebookPlatform",
    "InstagramPlatform",
    "PlatformAuthError",
    "PlatformError",
    "PublishError",
    "TikTokPlatform",
    "TokenRefreshError",
]
