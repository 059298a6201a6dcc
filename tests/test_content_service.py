"""
Tests for the unified content service: fan-out, merge and partial failure.
"""

import asyncio
import itertools
from unittest.mock import AsyncMock

import httpx
import pytest

from socialdash.exceptions import (
    AccountLookupError,
    AccountNotLinkedError,
    StorageError,
    ValidationError,
)
from socialdash.social.platforms import PlatformError
from socialdash.types.social import (
    MediaAttachment,
    PublishRequest,
    SocialPlatform,
)

from .stubs import FB_GRAPH, IG_GRAPH, TIKTOK_API, link_account

IMAGE = MediaAttachment(type="image", url="https://cdn.example/chart.png")


def delayed(delay: float, response: httpx.Response):
    async def handler(request):
        await asyncio.sleep(delay)
        return response

    return handler


def fb_post(post_id: str, created_time: str, message: str = "ACME") -> dict:
    return {"id": post_id, "message": message, "created_time": created_time,
            "from": {"id": "1", "name": "fb user"}}


def ig_media(media_id: str, timestamp: str) -> dict:
    return {"id": media_id, "caption": "#ACME", "timestamp": timestamp}


def tiktok_video(video_id: str, create_time: int) -> dict:
    return {"id": video_id, "desc": "ACME", "create_time": create_time,
            "author": {"unique_id": "tt_user"}}


def stub_mentions(provider, delays=(0.0, 0.0, 0.0)):
    """
    Mentions on all three platforms. The newest post on each platform
    shares the same instant, so ordering falls back to platform name.
    """
    fb_delay, ig_delay, tt_delay = delays
    provider.add("GET", f"{FB_GRAPH}/search", delayed(fb_delay, httpx.Response(200, json={"data": [
        fb_post("fb-old", "2024-03-01T08:00:00+0000"),
        fb_post("fb-new", "2024-03-01T12:00:00+0000"),
    ]})))
    provider.add("GET", f"{IG_GRAPH}/ig_hashtag_search",
                 httpx.Response(200, json={"data": [{"id": "tag"}]}))
    provider.add("GET", f"{IG_GRAPH}/tag/recent_media", delayed(ig_delay, httpx.Response(200, json={"data": [
        ig_media("ig-new", "2024-03-01T12:00:00+0000"),
        ig_media("ig-mid", "2024-03-01T10:00:00+0000"),
    ]})))
    # 2024-03-01T12:00:00Z and 2024-03-01T09:00:00Z
    provider.add("GET", f"{TIKTOK_API}/video/search/", delayed(tt_delay, httpx.Response(200, json={"data": {
        "videos": [tiktok_video("tt-new", 1709294400), tiktok_video("tt-early", 1709283600)],
    }})))


async def link_all(services, user_id="user-1"):
    for platform in SocialPlatform:
        await link_account(services, user_id, platform)


# =============================================================================
# Mentions
# =============================================================================


class TestFetchMentions:
    """Tests for fetch_mentions."""

    @pytest.mark.asyncio
    async def test_facebook_only_user_end_to_end(self, services, provider):
        provider.add("GET", f"{FB_GRAPH}/oauth/access_token",
                     httpx.Response(200, json={"access_token": "tok1"}))
        provider.add("GET", f"{FB_GRAPH}/me", httpx.Response(200, json={"id": "fb-1", "name": "Acme"}))
        provider.add("GET", f"{FB_GRAPH}/search", httpx.Response(200, json={"data": [
            fb_post("p-older", "2024-03-01T08:00:00+0000"),
            fb_post("p-newer", "2024-03-02T08:00:00+0000"),
        ]}))

        start = await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess")
        await services.link_flow.complete_link("code", start.state, "sess")
        result = await services.content.fetch_mentions("user-1", "ACME")

        assert [p.id for p in result.posts] == ["p-newer", "p-older"]
        assert all(p.platform == SocialPlatform.FACEBOOK for p in result.posts)
        assert result.failures == []
        search = provider.calls("GET", f"{FB_GRAPH}/search")[0]
        assert search.url.params["access_token"] == "tok1"
        assert search.url.params["q"] == "ACME"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("delays", list(itertools.permutations((0.0, 0.02, 0.04))))
    async def test_order_independent_of_completion_order(self, services, provider, delays):
        stub_mentions(provider, delays)
        await link_all(services)

        result = await services.content.fetch_mentions("user-1", "ACME")

        assert [p.id for p in result.posts] == [
            "fb-new", "ig-new", "tt-new",  # same instant, by platform name
            "ig-mid", "tt-early", "fb-old",
        ]

    @pytest.mark.asyncio
    async def test_failed_and_slow_platforms_become_failures(self, services, provider):
        stub_mentions(provider)
        provider.add("GET", f"{TIKTOK_API}/video/search/", httpx.Response(500, json={"error": {"message": "down"}}))
        provider.add("GET", f"{IG_GRAPH}/tag/recent_media",
                     delayed(1.0, httpx.Response(200, json={"data": []})))
        await link_all(services)
        services.content.call_timeout = 0.1

        result = await services.content.fetch_mentions("user-1", "ACME")

        assert [p.platform for p in result.posts] == [SocialPlatform.FACEBOOK] * 2
        failures = {f.platform: f for f in result.failures}
        assert failures[SocialPlatform.INSTAGRAM].error_type == "TimeoutError"
        assert failures[SocialPlatform.TIKTOK].error_type == "PlatformError"
        assert set(failures) == {SocialPlatform.INSTAGRAM, SocialPlatform.TIKTOK}

    @pytest.mark.asyncio
    async def test_no_linked_accounts(self, services, provider):
        result = await services.content.fetch_mentions("nobody", "ACME")

        assert result.posts == []
        assert result.failures == []
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_mid_aggregation(self, services, provider):
        async def search(request):
            if request.url.params["access_token"] == "stale":
                return httpx.Response(400, json={"error": {"message": "expired", "code": 190}})
            return httpx.Response(200, json={"data": [fb_post("p1", "2024-03-01T08:00:00+0000")]})

        provider.add("GET", f"{FB_GRAPH}/search", search)
        provider.add("GET", f"{FB_GRAPH}/oauth/access_token",
                     httpx.Response(200, json={"access_token": "fresh"}))
        account = await link_account(services, "user-1", SocialPlatform.FACEBOOK,
                                     access_token="stale", refresh_token="stale")

        result = await services.content.fetch_mentions("user-1", "ACME")

        assert [p.id for p in result.posts] == ["p1"]
        assert (await services.accounts.get_by_id(account.id)).access_token == "fresh"

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, services):
        with pytest.raises(ValidationError):
            await services.content.fetch_mentions("user-1", "   ")

    @pytest.mark.asyncio
    async def test_unreadable_accounts_is_fatal(self, services):
        services.accounts.list_active_accounts = AsyncMock(side_effect=StorageError())

        with pytest.raises(AccountLookupError):
            await services.content.fetch_mentions("user-1", "ACME")


class TestFetchFeed:
    """Tests for fetch_feed."""

    @pytest.mark.asyncio
    async def test_merges_own_posts(self, services, provider):
        provider.add("GET", f"{FB_GRAPH}/me/posts", httpx.Response(200, json={"data": [
            fb_post("fb-1", "2024-03-01T08:00:00+0000"),
        ]}))
        provider.add("GET", f"{TIKTOK_API}/user/videos/", httpx.Response(200, json={"data": {
            "videos": [{"id": "tt-1", "create_time": 1709294400}],
        }}))
        await link_account(services, "user-1", SocialPlatform.FACEBOOK)
        await link_account(services, "user-1", SocialPlatform.TIKTOK, handle="acmeco")

        result = await services.content.fetch_feed("user-1")

        assert [p.id for p in result.posts] == ["tt-1", "fb-1"]
        assert result.posts[0].author.name == "acmeco"


class TestFetchNotifications:
    """Tests for fetch_notifications."""

    @pytest.mark.asyncio
    async def test_merges_newest_first_with_failures(self, services, provider):
        provider.add("GET", f"{FB_GRAPH}/me/feed", httpx.Response(200, json={"data": [{
            "id": "1_2",
            "comments": {"data": [
                {"message": "early", "created_time": "2024-03-01T08:00:00+0000", "from": {"name": "a"}},
                {"message": "noon", "created_time": "2024-03-01T12:00:00+0000", "from": {"name": "b"}},
            ]},
            "reactions": {"summary": {"total_count": 4}},
        }]}))
        provider.add("GET", f"{TIKTOK_API}/notifications/list/", httpx.Response(200, json={"data": {
            "notifications": [{"type": "comment", "video_id": "v1", "text": "also noon",
                               "create_time": 1709294400}],
        }}))
        await link_all(services)

        result = await services.content.fetch_notifications("user-1")

        assert [(n.platform, n.content) for n in result.notifications] == [
            (SocialPlatform.FACEBOOK, "noon"),  # same instant, by platform name
            (SocialPlatform.TIKTOK, "also noon"),
            (SocialPlatform.FACEBOOK, "early"),
            (SocialPlatform.FACEBOOK, None),  # like counts carry no timestamp
        ]
        assert [f.platform for f in result.failures] == [SocialPlatform.INSTAGRAM]

    @pytest.mark.asyncio
    async def test_unreadable_accounts_is_fatal(self, services):
        services.accounts.list_active_accounts = AsyncMock(side_effect=StorageError())

        with pytest.raises(AccountLookupError):
            await services.content.fetch_notifications("user-1")


# =============================================================================
# Publishing
# =============================================================================


class TestPublish:
    """Tests for publish."""

    @pytest.mark.asyncio
    async def test_facebook_succeeds_instagram_fails(self, services, provider):
        provider.add("POST", f"{FB_GRAPH}/me/feed", httpx.Response(200, json={"id": "123_456"}))
        await link_account(services, "user-1", SocialPlatform.FACEBOOK)
        await link_account(services, "user-1", SocialPlatform.INSTAGRAM)

        result = await services.content.publish("user-1", PublishRequest(content="hello"))

        assert len(result.results) == 2
        by_platform = {r.platform: r for r in result.results}
        facebook = by_platform[SocialPlatform.FACEBOOK]
        assert facebook.success is True
        assert facebook.post_id == "123_456"
        assert facebook.url == "https://facebook.com/123_456"
        instagram = by_platform[SocialPlatform.INSTAGRAM]
        assert instagram.success is False
        assert instagram.error_type == "PublishError"
        assert instagram.reason

    @pytest.mark.asyncio
    async def test_provider_rejection_is_publish_error(self, services, provider):
        provider.add("POST", f"{FB_GRAPH}/me/feed", httpx.Response(200, json={"id": "1_2"}))
        provider.add("POST", f"{IG_GRAPH}/me/media", httpx.Response(
            400, json={"error": {"message": "Invalid image", "code": 36003}},
        ))
        await link_account(services, "user-1", SocialPlatform.FACEBOOK)
        await link_account(services, "user-1", SocialPlatform.INSTAGRAM)

        result = await services.content.publish(
            "user-1", PublishRequest(content="hello", media=[IMAGE]),
        )

        assert [(r.platform, r.success, r.error_type) for r in result.results] == [
            (SocialPlatform.FACEBOOK, True, None),
            (SocialPlatform.INSTAGRAM, False, "PublishError"),
        ]

    @pytest.mark.asyncio
    async def test_one_result_per_target_in_target_order(self, services, provider):
        provider.add("POST", f"{FB_GRAPH}/me/feed", httpx.Response(200, json={"id": "1_2"}))
        provider.add("POST", f"{IG_GRAPH}/me/media",
                     delayed(1.0, httpx.Response(200, json={"id": "c"})))
        await link_account(services, "user-1", SocialPlatform.FACEBOOK)
        await link_account(services, "user-1", SocialPlatform.INSTAGRAM)
        services.content.call_timeout = 0.1
        targets = [SocialPlatform.TIKTOK, SocialPlatform.INSTAGRAM, SocialPlatform.FACEBOOK]

        result = await services.content.publish(
            "user-1", PublishRequest(content="hello", media=[IMAGE], platforms=targets),
        )

        assert [r.platform for r in result.results] == targets
        tiktok, instagram, facebook = result.results
        assert tiktok.success is False
        assert tiktok.reason == "account not linked"
        assert instagram.success is False
        assert instagram.error_type == "PublishError"
        assert "0.1" in instagram.reason
        assert facebook.success is True

    @pytest.mark.asyncio
    async def test_failed_refresh_is_token_refresh_error(self, services, provider):
        provider.add("POST", f"{FB_GRAPH}/me/feed", httpx.Response(
            400, json={"error": {"message": "Session expired", "code": 190}},
        ))
        provider.add("GET", f"{FB_GRAPH}/oauth/access_token", httpx.Response(
            400, json={"error": {"message": "Session expired", "code": 190}},
        ))
        account = await link_account(services, "user-1", SocialPlatform.FACEBOOK)

        result = await services.content.publish("user-1", PublishRequest(content="hello"))

        assert result.results[0].error_type == "TokenRefreshError"
        assert (await services.accounts.get_by_id(account.id)).is_active is False


class TestDeletePost:
    """Tests for delete_post."""

    @pytest.mark.asyncio
    async def test_delete_twice_is_safe(self, services, provider):
        responses = iter([
            httpx.Response(200, json={"success": True}),
            httpx.Response(400, json={"error": {"message": "Object does not exist",
                                                "code": 100, "error_subcode": 33}}),
        ])
        provider.add("DELETE", f"{FB_GRAPH}/1_2", lambda request: next(responses))
        await link_account(services, "user-1", SocialPlatform.FACEBOOK)

        first = await services.content.delete_post("user-1", SocialPlatform.FACEBOOK, "1_2")
        second = await services.content.delete_post("user-1", SocialPlatform.FACEBOOK, "1_2")

        assert first.success is True
        assert second.success is True

    @pytest.mark.asyncio
    async def test_provider_failure_is_reported(self, services, provider):
        provider.add("POST", f"{TIKTOK_API}/video/delete/", httpx.Response(500, json={"error": {"message": "down"}}))
        await link_account(services, "user-1", SocialPlatform.TIKTOK)

        result = await services.content.delete_post("user-1", "tiktok", "v1")

        assert result.success is False
        assert result.post_id == "v1"
        assert result.error_type == "PlatformError"

    @pytest.mark.asyncio
    async def test_unlinked_platform(self, services):
        with pytest.raises(AccountNotLinkedError):
            await services.content.delete_post("user-1", SocialPlatform.FACEBOOK, "1_2")


# =============================================================================
# Analytics
# =============================================================================


class TestAnalytics:
    """Tests for post analytics and snapshots."""

    @pytest.mark.asyncio
    async def test_post_analytics_zero_filled(self, services, provider):
        provider.add("GET", f"{IG_GRAPH}/m1/insights", httpx.Response(200, json={"data": [
            {"name": "impressions", "values": [{"value": 40}]},
        ]}))
        await link_account(services, "user-1", SocialPlatform.INSTAGRAM)

        analytics = await services.content.get_post_analytics("user-1", SocialPlatform.INSTAGRAM, "m1")

        assert analytics.model_dump() == {
            "impressions": 40, "reaches": 0, "engagements": 0, "shares": 0, "saves": 0,
        }

    @pytest.mark.asyncio
    async def test_post_analytics_timeout(self, services, provider):
        provider.add("GET", f"{FB_GRAPH}/p1/insights",
                     delayed(1.0, httpx.Response(200, json={"data": []})))
        await link_account(services, "user-1", SocialPlatform.FACEBOOK)
        services.content.call_timeout = 0.1

        with pytest.raises(PlatformError) as exc_info:
            await services.content.get_post_analytics("user-1", SocialPlatform.FACEBOOK, "p1")

        assert exc_info.value.error_code == "timeout"

    @pytest.mark.asyncio
    async def test_snapshots_are_appended(self, services, provider):
        provider.add("GET", f"{FB_GRAPH}/me/insights", httpx.Response(200, json={"data": [
            {"name": "page_impressions", "values": [{"value": 500}]},
        ]}))
        provider.add("GET", f"{TIKTOK_API}/user/stats/",
                     httpx.Response(200, json={"data": {"stats": {"follower_count": 10}}}))
        fb = await link_account(services, "user-1", SocialPlatform.FACEBOOK)
        await link_account(services, "user-1", SocialPlatform.TIKTOK)

        first = await services.content.collect_analytics("user-1")
        second = await services.content.collect_analytics("user-1")

        assert len(first.snapshots) == 2
        assert first.failures == []
        assert {s.id for s in first.snapshots}.isdisjoint({s.id for s in second.snapshots})
        history = await services.snapshots.list_for_account(fb.id)
        assert len(history) == 2
        assert all(s.reach_rate == 5.0 for s in history)

    @pytest.mark.asyncio
    async def test_failed_platform_gets_no_snapshot(self, services, provider):
        provider.add("GET", f"{FB_GRAPH}/me/insights", httpx.Response(200, json={"data": []}))
        await link_account(services, "user-1", SocialPlatform.FACEBOOK)
        await link_account(services, "user-1", SocialPlatform.INSTAGRAM)

        result = await services.content.collect_analytics("user-1")

        assert [s.platform for s in result.snapshots] == [SocialPlatform.FACEBOOK]
        assert [f.platform for f in result.failures] == [SocialPlatform.INSTAGRAM]

    @pytest.mark.asyncio
    async def test_history_is_scoped_to_platform(self, services, provider):
        provider.add("GET", f"{FB_GRAPH}/me/insights", httpx.Response(200, json={"data": []}))
        provider.add("GET", f"{TIKTOK_API}/user/stats/", httpx.Response(200, json={"data": {"stats": {}}}))
        fb = await link_account(services, "user-1", SocialPlatform.FACEBOOK)
        await link_account(services, "user-1", SocialPlatform.TIKTOK)
        await services.content.collect_analytics("user-1")
        await services.content.collect_analytics("user-1")

        history = await services.content.analytics_history("user-1", "facebook")
        latest = await services.content.analytics_history("user-1", SocialPlatform.FACEBOOK, limit=1)

        assert [s.account_id for s in history] == [fb.id, fb.id]
        assert len(latest) == 1

    @pytest.mark.asyncio
    async def test_history_of_unlinked_platform(self, services):
        with pytest.raises(AccountNotLinkedError) as exc_info:
            await services.content.analytics_history("user-1", SocialPlatform.INSTAGRAM)

        assert exc_info.value.details == {"platform": "instagram"}

    @pytest.mark.asyncio
    async def test_history_storage_failure(self, services):
        fb = await link_account(services, "user-1", SocialPlatform.FACEBOOK)
        services.snapshots.list_for_account = AsyncMock(side_effect=StorageError())

        with pytest.raises(AccountLookupError):
            await services.content.analytics_history("user-1", SocialPlatform.FACEBOOK)
        services.snapshots.list_for_account.assert_awaited_once_with(fb.id, limit=30)


class TestListAccounts:
    """Tests for list_accounts."""

    @pytest.mark.asyncio
    async def test_lists_active_accounts_without_tokens(self, services):
        await link_all(services)
        tiktok = await services.accounts.get_account("user-1", SocialPlatform.TIKTOK)
        await services.accounts.deactivate(tiktok.id)

        accounts = await services.content.list_accounts("user-1")

        assert [a.platform for a in accounts] == [SocialPlatform.FACEBOOK, SocialPlatform.INSTAGRAM]
        assert all("access_token" not in a.model_dump() for a in accounts)
