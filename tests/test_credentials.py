"""
Tests for reactive token refresh.
"""

import asyncio
import itertools

import httpx
import pytest

from socialdash.social.platforms import PlatformAuthError, TokenRefreshError
from socialdash.types.social import SocialPlatform

from .stubs import FB_GRAPH, TIKTOK_API, link_account


def stub_tiktok_refresh(provider, delay: float = 0.0):
    """Each refresh response carries a matching access/refresh pair."""
    counter = itertools.count(1)

    async def refresh(request):
        n = next(counter)
        await asyncio.sleep(delay)
        return httpx.Response(200, json={"data": {
            "access_token": f"access-{n}",
            "refresh_token": f"refresh-{n}",
            "expires_in": 86400,
        }})

    provider.add("POST", f"{TIKTOK_API}/oauth/refresh_token/", refresh)


def rejecting(token: str):
    """An operation that rejects ``token`` and accepts anything else."""
    seen = []

    async def operation(account):
        seen.append(account.access_token)
        if account.access_token == token:
            raise PlatformAuthError("token expired", platform=account.platform)
        return account.access_token

    return operation, seen


class TestRefresh:
    """Tests for CredentialManager.refresh."""

    @pytest.mark.asyncio
    async def test_refresh_persists_new_tokens(self, services, provider):
        stub_tiktok_refresh(provider)
        account = await link_account(services, "user-1", SocialPlatform.TIKTOK,
                                     access_token="old", refresh_token="refresh-0")

        refreshed = await services.credentials.refresh(account)

        assert refreshed.access_token == "access-1"
        stored = await services.accounts.get_by_id(account.id)
        assert stored.access_token == "access-1"
        assert stored.refresh_token == "refresh-1"
        assert stored.token_expires_at is not None

    @pytest.mark.asyncio
    async def test_concurrent_refresh_is_consistent(self, services, provider):
        stub_tiktok_refresh(provider, delay=0.05)
        account = await link_account(services, "user-1", SocialPlatform.TIKTOK,
                                     access_token="old", refresh_token="refresh-0")

        results = await asyncio.gather(
            services.credentials.refresh(account),
            services.credentials.refresh(account),
        )

        stored = await services.accounts.get_by_id(account.id)
        # Access and refresh token come from the same response
        assert stored.access_token.split("-")[1] == stored.refresh_token.split("-")[1]
        assert [r.access_token for r in results] == [stored.access_token] * 2
        # The second caller reuses the rotated token
        assert len(provider.calls("POST", f"{TIKTOK_API}/oauth/refresh_token/")) == 1

    @pytest.mark.asyncio
    async def test_locks_are_dropped_after_refresh(self, services, provider):
        stub_tiktok_refresh(provider, delay=0.01)
        account = await link_account(services, "user-1", SocialPlatform.TIKTOK,
                                     access_token="old", refresh_token="refresh-0")
        other = await link_account(services, "user-2", SocialPlatform.TIKTOK)

        await asyncio.gather(
            services.credentials.refresh(account),
            services.credentials.refresh(account),
            services.credentials.refresh(other),
        )

        assert services.credentials._locks == {}

    @pytest.mark.asyncio
    async def test_lock_dropped_when_refresh_fails(self, services, provider):
        account = await link_account(services, "user-1", SocialPlatform.TIKTOK, refresh_token=None)

        with pytest.raises(TokenRefreshError):
            await services.credentials.refresh(account)

        assert services.credentials._locks == {}

    @pytest.mark.asyncio
    async def test_rotated_tokens_persist_when_caller_is_cancelled(self, services, provider, monkeypatch):
        stub_tiktok_refresh(provider)
        account = await link_account(services, "user-1", SocialPlatform.TIKTOK,
                                     access_token="old", refresh_token="refresh-0")
        entered, release, persisted = asyncio.Event(), asyncio.Event(), asyncio.Event()
        original = services.accounts.update_tokens

        async def slow_update(account_id, tokens):
            entered.set()
            await release.wait()
            updated = await original(account_id, tokens)
            persisted.set()
            return updated

        monkeypatch.setattr(services.accounts, "update_tokens", slow_update)

        task = asyncio.create_task(services.credentials.refresh(account))
        await asyncio.wait_for(entered.wait(), timeout=1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        release.set()
        await asyncio.wait_for(persisted.wait(), timeout=1)

        stored = await services.accounts.get_by_id(account.id)
        assert stored.access_token == "access-1"
        assert stored.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_rejected_refresh_deactivates(self, services, provider):
        provider.add("POST", f"{TIKTOK_API}/oauth/refresh_token/", httpx.Response(
            400, json={"error": {"code": "invalid_grant", "message": "refresh token revoked"}},
        ))
        account = await link_account(services, "user-1", SocialPlatform.TIKTOK)

        with pytest.raises(TokenRefreshError):
            await services.credentials.refresh(account)

        stored = await services.accounts.get_by_id(account.id)
        assert stored.is_active is False
        assert await services.accounts.list_active_accounts("user-1") == []

    @pytest.mark.asyncio
    async def test_missing_refresh_token_deactivates(self, services, provider):
        account = await link_account(services, "user-1", SocialPlatform.TIKTOK, refresh_token=None)

        with pytest.raises(TokenRefreshError) as exc_info:
            await services.credentials.refresh(account)

        assert exc_info.value.error_code == "missing_refresh_token"
        assert (await services.accounts.get_by_id(account.id)).is_active is False
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_inactive_account_is_not_refreshed(self, services, provider):
        stub_tiktok_refresh(provider)
        account = await link_account(services, "user-1", SocialPlatform.TIKTOK)
        await services.accounts.deactivate(account.id)

        with pytest.raises(TokenRefreshError):
            await services.credentials.refresh(account)

        assert provider.requests == []


class TestCallWithRefresh:
    """Tests for refresh-and-retry around provider calls."""

    @pytest.mark.asyncio
    async def test_success_without_refresh(self, services, provider):
        account = await link_account(services, "user-1", SocialPlatform.TIKTOK, access_token="good")
        operation, seen = rejecting("bad")

        assert await services.credentials.call_with_refresh(account, operation) == "good"
        assert seen == ["good"]
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_retries_once_after_refresh(self, services, provider):
        stub_tiktok_refresh(provider)
        account = await link_account(services, "user-1", SocialPlatform.TIKTOK, access_token="old")
        operation, seen = rejecting("old")

        result = await services.credentials.call_with_refresh(account, operation)

        assert result == "access-1"
        assert seen == ["old", "access-1"]

    @pytest.mark.asyncio
    async def test_rejection_after_refresh_deactivates(self, services, provider):
        provider.add("GET", f"{FB_GRAPH}/oauth/access_token",
                     httpx.Response(200, json={"access_token": "fresh"}))
        account = await link_account(services, "user-1", SocialPlatform.FACEBOOK, access_token="old")

        async def always_rejected(current):
            raise PlatformAuthError("revoked", platform=current.platform)

        with pytest.raises(PlatformAuthError):
            await services.credentials.call_with_refresh(account, always_rejected)

        assert (await services.accounts.get_by_id(account.id)).is_active is False
