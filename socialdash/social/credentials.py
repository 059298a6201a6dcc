"""
Token refresh for linked accounts.

Refresh is reactive: a provider call that fails with PlatformAuthError is
retried once after refreshing the account's token. Overlapping refreshes
for the same (user, platform) are coalesced behind one asyncio.Lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Tuple, TypeVar

from socialdash.storage import SocialAccountStore
from socialdash.types.social import SocialAccount, SocialPlatform

from .platforms import PlatformAuthError, TokenRefreshError
from .registry import PlatformRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CredentialManager:
    """Refreshes and persists provider tokens."""

    def __init__(self, store: SocialAccountStore, registry: PlatformRegistry) -> None:
        self._store = store
        self._registry = registry
        self._locks: Dict[Tuple[str, SocialPlatform], asyncio.Lock] = {}
        self._holders: Dict[Tuple[str, SocialPlatform], int] = {}

    @asynccontextmanager
    async def _locked(self, account: SocialAccount) -> AsyncIterator[None]:
        """Serialize refreshes per (user, platform); the lock is dropped once unused."""
        key = (account.user_id, account.platform)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    async def refresh(self, account: SocialAccount) -> SocialAccount:
        """
        Refresh ``account``'s access token and persist it.

        If another caller rotated the token while this one waited for the
        lock, the already-rotated row is returned without a provider call.

        Args:
            account: The account as the caller last saw it

        Returns:
            The account with its current tokens

        Raises:
            TokenRefreshError: No refresh token, or the provider rejected it.
                The account is deactivated before this is raised.
        """
        async with self._locked(account):
            current = await self._store.get_by_id(account.id)
            if current is None or not current.is_active:
                raise TokenRefreshError(
                    "Account is no longer active",
                    platform=account.platform,
                    error_code="account_inactive",
                )

            if current.access_token != account.access_token:
                logger.debug(f"Token for account {account.id} already rotated")
                return current

            if not current.refresh_token:
                await self._store.deactivate(current.id)
                raise TokenRefreshError(
                    "No refresh token stored; reconnect the account",
                    platform=current.platform,
                    error_code="missing_refresh_token",
                )

            client = self._registry.get(current.platform)
            try:
                tokens = await client.refresh_access_token(current.refresh_token)
            except TokenRefreshError as e:
                logger.warning(
                    f"Token refresh failed for {current.platform.value} account "
                    f"{current.id}: {e.message}"
                )
                await self._store.deactivate(current.id)
                raise

            # A rotated refresh token is only valid once; persist it even if the caller is cancelled
            updated = await asyncio.shield(self._store.update_tokens(current.id, tokens))
            if updated is None:
                raise TokenRefreshError(
                    "Account disappeared during refresh",
                    platform=current.platform,
                )

            logger.info(f"Refreshed {current.platform.value} token for account {current.id}")
            return updated

    async def call_with_refresh(
        self,
        account: SocialAccount,
        operation: Callable[[SocialAccount], Awaitable[T]],
    ) -> T:
        """
        Run ``operation``; on PlatformAuthError refresh once and retry.

        A token that is rejected again right after a successful refresh
        means access was revoked, so the account is deactivated.
        """
        try:
            return await operation(account)
        except PlatformAuthError:
            logger.info(f"{account.platform.value} rejected token for account {account.id}; refreshing")

        refreshed = await self.refresh(account)
        try:
            return await operation(refreshed)
        except PlatformAuthError:
            logger.warning(
                f"{account.platform.value} rejected a freshly refreshed token; "
                f"deactivating account {account.id}"
            )
            await self._store.deactivate(account.id)
            raise
