"""
Tests for the OAuth account-linking flow.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from socialdash.exceptions import CsrfMismatchError
from socialdash.social.link_flow import AUTH_FAILED
from socialdash.types.social import LinkOutcome, SocialPlatform

from .stubs import FB_GRAPH, TIKTOK_API


def stub_facebook_login(provider, token: str = "tok1") -> None:
    provider.add("GET", f"{FB_GRAPH}/oauth/access_token",
                 httpx.Response(200, json={"access_token": token, "expires_in": 5184000}))
    provider.add("GET", f"{FB_GRAPH}/me",
                 httpx.Response(200, json={"id": "fb-42", "name": "Acme Corp", "followers_count": 10}))


def state_of(authorization_url: str) -> str:
    return parse_qs(urlparse(authorization_url).query)["state"][0]


class TestStartLink:
    """Tests for start_link."""

    @pytest.mark.asyncio
    async def test_returns_url_with_state(self, services):
        start = await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")

        assert state_of(start.authorization_url) == start.state
        assert len(start.state) >= 32

    @pytest.mark.asyncio
    async def test_each_start_issues_fresh_state(self, services):
        first = await services.link_flow.start_link("user-1", "facebook", "sess-1")
        second = await services.link_flow.start_link("user-1", "facebook", "sess-1")

        assert first.state != second.state


class TestCompleteLink:
    """Tests for complete_link."""

    @pytest.mark.asyncio
    async def test_successful_link_persists_account(self, services, provider):
        stub_facebook_login(provider)
        start = await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")

        outcome = await services.link_flow.complete_link("code-1", start.state, "sess-1")

        assert outcome.linked is True
        assert outcome.account.access_token == "tok1"
        assert outcome.account.handle == "Acme Corp"
        stored = await services.accounts.get_account("user-1", SocialPlatform.FACEBOOK)
        assert stored.platform_account_id == "fb-42"
        assert stored.is_active is True

    @pytest.mark.asyncio
    async def test_mismatched_state_writes_nothing(self, services, provider):
        stub_facebook_login(provider)
        await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")

        with pytest.raises(CsrfMismatchError):
            await services.link_flow.complete_link("code-1", "forged-state", "sess-1")

        assert await services.accounts.count() == 0
        # The code is never exchanged
        assert provider.calls("GET", f"{FB_GRAPH}/oauth/access_token") == []

    @pytest.mark.asyncio
    async def test_superseded_state_is_rejected(self, services, provider):
        stub_facebook_login(provider)
        first = await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")
        await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")

        with pytest.raises(CsrfMismatchError):
            await services.link_flow.complete_link("code-1", first.state, "sess-1")

        assert await services.accounts.count() == 0

    @pytest.mark.asyncio
    async def test_state_from_another_session_is_rejected(self, services, provider):
        stub_facebook_login(provider)
        start = await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")

        with pytest.raises(CsrfMismatchError):
            await services.link_flow.complete_link("code-1", start.state, "sess-2")

        assert await services.accounts.count() == 0

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, services, provider):
        stub_facebook_login(provider)
        start = await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")
        await services.link_flow.complete_link("code-1", start.state, "sess-1")

        with pytest.raises(CsrfMismatchError):
            await services.link_flow.complete_link("code-1", start.state, "sess-1")

    @pytest.mark.asyncio
    async def test_missing_state_is_rejected(self, services):
        await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")

        with pytest.raises(CsrfMismatchError):
            await services.link_flow.complete_link("code-1", None, "sess-1")

    @pytest.mark.asyncio
    async def test_callback_platform_must_match_state(self, services, provider):
        stub_facebook_login(provider)
        start = await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")

        with pytest.raises(CsrfMismatchError):
            await services.link_flow.complete_link(
                "code-1", start.state, "sess-1", platform=SocialPlatform.TIKTOK,
            )

        assert await services.accounts.count() == 0

    @pytest.mark.asyncio
    async def test_rejected_code_reports_auth_failed(self, services, provider):
        provider.add("POST", f"{TIKTOK_API}/oauth/access_token/", httpx.Response(
            400, json={"error": {"code": "invalid_grant", "message": "code expired"}},
        ))
        start = await services.link_flow.start_link("user-1", SocialPlatform.TIKTOK, "sess-1")

        outcome = await services.link_flow.complete_link("stale", start.state, "sess-1")

        assert outcome.linked is False
        assert outcome.error == AUTH_FAILED
        assert outcome.platform == SocialPlatform.TIKTOK
        assert await services.accounts.count() == 0

    @pytest.mark.asyncio
    async def test_relink_updates_existing_row(self, services, provider):
        stub_facebook_login(provider, token="tok1")
        start = await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")
        first = await services.link_flow.complete_link("code-1", start.state, "sess-1")

        stub_facebook_login(provider, token="tok2")
        start = await services.link_flow.start_link("user-1", SocialPlatform.FACEBOOK, "sess-1")
        second = await services.link_flow.complete_link("code-2", start.state, "sess-1")

        assert second.account.id == first.account.id
        assert second.account.access_token == "tok2"
        assert await services.accounts.count() == 1


class TestRedirectUrl:
    """Tests for the dashboard redirect."""

    def test_connected(self, services):
        outcome = LinkOutcome(platform=SocialPlatform.INSTAGRAM, linked=True)

        assert services.link_flow.redirect_url(outcome) == "/dashboard?connected=instagram"

    def test_error(self, services):
        outcome = LinkOutcome(platform=SocialPlatform.TIKTOK, linked=False, error=AUTH_FAILED)

        assert services.link_flow.redirect_url(outcome) == "/dashboard?error=tiktok_auth_failed"
