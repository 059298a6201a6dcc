"""
Tests for the platform registry.
"""

import logging

import pytest

from socialdash.config import TikTokSettings
from socialdash.exceptions import UnknownPlatformError
from socialdash.social import PlatformRegistry, build_registry
from socialdash.social.platforms import FacebookPlatform, InstagramPlatform, TikTokPlatform
from socialdash.types.social import SocialPlatform

from .stubs import make_settings


class TestPlatformRegistry:
    """Tests for registry lookups."""

    def test_build_registers_every_platform(self, settings):
        registry = build_registry(settings)

        assert len(registry) == 3
        assert isinstance(registry.get(SocialPlatform.FACEBOOK), FacebookPlatform)
        assert isinstance(registry.get(SocialPlatform.INSTAGRAM), InstagramPlatform)
        assert isinstance(registry.get(SocialPlatform.TIKTOK), TikTokPlatform)

    def test_lookup_returns_same_instance(self, settings):
        registry = build_registry(settings)

        assert registry.get("facebook") is registry.get(SocialPlatform.FACEBOOK)

    def test_unconfigured_platforms_still_registered(self):
        registry = build_registry(make_settings(
            tiktok=TikTokSettings(tiktok_app_id=None, tiktok_app_secret=None),
        ))

        assert SocialPlatform.TIKTOK in registry
        assert registry.get(SocialPlatform.TIKTOK).is_configured is False

    def test_redirect_uri_from_app_url(self, settings):
        registry = build_registry(settings)

        client = registry.get(SocialPlatform.INSTAGRAM)
        assert client.redirect_uri == "http://testserver/api/social/instagram/callback"

    def test_unknown_platform_raises_and_logs_critical(self, caplog):
        registry = PlatformRegistry()

        with caplog.at_level(logging.CRITICAL, logger="socialdash.social.registry"):
            with pytest.raises(UnknownPlatformError) as exc_info:
                registry.get("myspace")

        assert exc_info.value.status_code == 500
        assert exc_info.value.details == {"platform": "myspace"}
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    def test_known_identifier_missing_from_registry(self, settings):
        full = build_registry(settings)
        registry = PlatformRegistry([full.get(SocialPlatform.FACEBOOK)])

        with pytest.raises(UnknownPlatformError):
            registry.get(SocialPlatform.TIKTOK)
        assert "tiktok" not in registry
        assert "facebook" in registry
        assert "bogus" not in registry

    def test_register_replaces(self, settings):
        full = build_registry(settings)
        registry = PlatformRegistry([full.get(SocialPlatform.FACEBOOK)])
        replacement = FacebookPlatform("other", "secret", "http://testserver/cb")

        registry.register(replacement)

        assert registry.get(SocialPlatform.FACEBOOK) is replacement
        assert registry.platforms() == [SocialPlatform.FACEBOOK]
