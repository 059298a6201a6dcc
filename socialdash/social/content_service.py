"""
Unified content service: concurrent fan-out across a user's linked platforms.

Every aggregation resolves the user's active accounts, calls each
platform client concurrently (each call bounded by a timeout), and merges
the results. A failing platform contributes a failure record instead of
failing the whole request. Only an unreadable account store is fatal.
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, List, Sequence, Tuple, TypeVar, Union

from socialdash.exceptions import (
    AccountLookupError,
    AccountNotLinkedError,
    StorageError,
    ValidationError,
)
from socialdash.storage import AnalyticsSnapshotStore, SocialAccountStore
from socialdash.types.social import (
    AnalyticsResult,
    AnalyticsSnapshot,
    LinkedAccountView,
    MentionsResult,
    NotificationsResult,
    PartialAggregationFailure,
    PlatformPostResult,
    PostAnalytics,
    PublishRequest,
    PublishResult,
    SocialAccount,
    SocialNotification,
    SocialPlatform,
    UnifiedPost,
)
from socialdash.utils.logging import Timer

from .credentials import CredentialManager
from .platforms import BasePlatform, PlatformError, TokenRefreshError
from .registry import PlatformRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")
Dated = TypeVar("Dated", UnifiedPost, SocialNotification)

PlatformCall = Callable[[BasePlatform, SocialAccount], Awaitable[T]]

NOT_LINKED_REASON = "account not linked"


def sort_by_recency(items: Sequence[Dated]) -> List[Dated]:
    """Newest first; equal timestamps ordered by platform name."""
    return sorted(items, key=lambda i: (-i.created_at.timestamp(), i.platform.value))


class UnifiedContentService:
    """
    Cross-platform mentions, feed, publishing and analytics.
    """

    def __init__(
        self,
        registry: PlatformRegistry,
        accounts: SocialAccountStore,
        snapshots: AnalyticsSnapshotStore,
        credentials: CredentialManager,
        call_timeout: float = 10.0,
    ) -> None:
        self._registry = registry
        self._accounts = accounts
        self._snapshots = snapshots
        self._credentials = credentials
        self.call_timeout = call_timeout

    # =========================================================================
    # Fan-out helpers
    # =========================================================================

    async def _active_accounts(self, user_id: str) -> List[SocialAccount]:
        try:
            return await self._accounts.list_active_accounts(user_id)
        except StorageError as e:
            logger.error(f"Could not resolve linked accounts for user {user_id}")
            raise AccountLookupError() from e

    async def _active_account(
        self,
        user_id: str,
        platform: Union[SocialPlatform, str],
    ) -> Tuple[BasePlatform, SocialAccount]:
        client = self._registry.get(platform)
        try:
            account = await self._accounts.get_account(user_id, client.platform)
        except StorageError as e:
            raise AccountLookupError() from e
        if account is None or not account.is_active:
            raise AccountNotLinkedError(
                f"No active {client.config.name} account linked",
                details={"platform": client.platform.value},
            )
        return client, account

    async def _call(self, account: SocialAccount, operation: PlatformCall) -> Any:
        """One platform's share of a round: refresh-aware and time-bounded."""
        client = self._registry.get(account.platform)
        return await asyncio.wait_for(
            self._credentials.call_with_refresh(
                account, lambda current: operation(client, current)
            ),
            timeout=self.call_timeout,
        )

    async def _fan_out(
        self,
        accounts: Sequence[SocialAccount],
        operation: PlatformCall,
    ) -> List[Tuple[SocialAccount, Any]]:
        """
        Run ``operation`` for every account concurrently.

        Returns:
            (account, result-or-exception) pairs in ``accounts`` order,
            independent of completion order
        """
        outcomes = await asyncio.gather(
            *(self._call(account, operation) for account in accounts),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
        return list(zip(accounts, outcomes))

    def _failure(self, platform: SocialPlatform, exc: BaseException) -> PartialAggregationFailure:
        if isinstance(exc, asyncio.TimeoutError):
            logger.warning(f"{platform.value} timed out after {self.call_timeout}s")
            return PartialAggregationFailure(
                platform=platform,
                error_type="TimeoutError",
                reason=f"No response within {self.call_timeout:g}s",
            )
        if isinstance(exc, PlatformError):
            logger.warning(f"{platform.value} failed: {exc.message}")
            return PartialAggregationFailure(
                platform=platform,
                error_type=type(exc).__name__,
                reason=exc.message,
            )
        logger.error(f"Unexpected error from {platform.value}", exc_info=exc)
        return PartialAggregationFailure(
            platform=platform,
            error_type=type(exc).__name__,
            reason="Unexpected error",
        )

    async def _collect(
        self,
        user_id: str,
        name: str,
        operation: PlatformCall,
    ) -> Tuple[List[Any], List[PartialAggregationFailure]]:
        """Concatenate list-valued results; failed platforms become failure records."""
        accounts = await self._active_accounts(user_id)

        with Timer(name, logger):
            outcomes = await self._fan_out(accounts, operation)

        items: List[Any] = []
        failures: List[PartialAggregationFailure] = []
        for account, outcome in outcomes:
            if isinstance(outcome, BaseException):
                failures.append(self._failure(account.platform, outcome))
            else:
                items.extend(outcome)
        return items, failures

    async def _collect_posts(self, user_id: str, name: str, operation: PlatformCall) -> MentionsResult:
        posts, failures = await self._collect(user_id, name, operation)
        return MentionsResult(posts=sort_by_recency(posts), failures=failures)

    # =========================================================================
    # Posts
    # =========================================================================

    async def fetch_mentions(self, user_id: str, query: str) -> MentionsResult:
        """
        Search every active linked platform for ``query``.

        Args:
            user_id: The dashboard user
            query: Search term, e.g. a ticker symbol

        Returns:
            Merged posts (newest first) plus per-platform failures

        Raises:
            ValidationError: Blank query
            AccountLookupError: Linked accounts could not be read
        """
        if not query or not query.strip():
            raise ValidationError("Search query cannot be empty", details={"field": "q"})

        term = query.strip()
        return await self._collect_posts(
            user_id,
            "fetch_mentions",
            lambda client, account: client.search_posts(account, term),
        )

    async def fetch_feed(self, user_id: str) -> MentionsResult:
        """The user's own recent posts across platforms, merged like mentions."""
        return await self._collect_posts(
            user_id,
            "fetch_feed",
            lambda client, account: client.get_feed(account),
        )

    async def fetch_notifications(self, user_id: str) -> NotificationsResult:
        """
        Recent activity on the user's own posts across platforms.

        Merged newest first like mentions; like counts carry no timestamp
        and come last.
        """
        notifications, failures = await self._collect(
            user_id,
            "fetch_notifications",
            lambda client, account: client.get_notifications(account),
        )
        return NotificationsResult(
            notifications=sort_by_recency(notifications),
            failures=failures,
        )

    def _publish_failure(self, platform: SocialPlatform, exc: BaseException) -> PlatformPostResult:
        failure = self._failure(platform, exc)
        error_type = "TokenRefreshError" if isinstance(exc, TokenRefreshError) else "PublishError"
        return PlatformPostResult(
            platform=platform,
            success=False,
            error_type=error_type,
            reason=failure.reason,
        )

    async def publish(self, user_id: str, request: PublishRequest) -> PublishResult:
        """
        Publish ``request`` to each targeted platform.

        Targets are ``request.platforms`` or, when unset, every active linked
        platform. Exactly one result is returned per target, in target order.

        Raises:
            AccountLookupError: Linked accounts could not be read
        """
        accounts = await self._active_accounts(user_id)
        by_platform = {account.platform: account for account in accounts}
        targets = (
            request.platforms
            if request.platforms is not None
            else [account.platform for account in accounts]
        )

        linked = [by_platform[p] for p in targets if p in by_platform]
        with Timer("publish", logger):
            fanned = await self._fan_out(
                linked,
                lambda client, account: client.create_post(account, request),
            )
        outcomes = {account.platform: outcome for account, outcome in fanned}

        results: List[PlatformPostResult] = []
        for platform in targets:
            if platform not in outcomes:
                results.append(
                    PlatformPostResult(
                        platform=platform,
                        success=False,
                        error_type="PublishError",
                        reason=NOT_LINKED_REASON,
                    )
                )
                continue

            outcome = outcomes[platform]
            if isinstance(outcome, BaseException):
                results.append(self._publish_failure(platform, outcome))
            else:
                post_id, url = outcome
                results.append(
                    PlatformPostResult(platform=platform, success=True, post_id=post_id, url=url)
                )

        published = sum(1 for r in results if r.success)
        logger.info(f"Published to {published}/{len(results)} platforms for user {user_id}")
        return PublishResult(results=results)

    async def delete_post(
        self,
        user_id: str,
        platform: Union[SocialPlatform, str],
        post_id: str,
    ) -> PlatformPostResult:
        """
        Delete a post. A post the provider no longer has counts as deleted,
        so repeating the call is safe.

        Raises:
            AccountNotLinkedError: No active account on ``platform``
        """
        client, account = await self._active_account(user_id, platform)
        try:
            await self._call(account, lambda c, current: c.delete_post(current, post_id))
        except (PlatformError, asyncio.TimeoutError) as e:
            failure = self._failure(client.platform, e)
            return PlatformPostResult(
                platform=client.platform,
                success=False,
                post_id=post_id,
                error_type=failure.error_type,
                reason=failure.reason,
            )
        return PlatformPostResult(platform=client.platform, success=True, post_id=post_id)

    # =========================================================================
    # Analytics
    # =========================================================================

    async def get_post_analytics(
        self,
        user_id: str,
        platform: Union[SocialPlatform, str],
        post_id: str,
    ) -> PostAnalytics:
        """
        Metrics for one post.

        Raises:
            AccountNotLinkedError: No active account on ``platform``
            PlatformError: The provider call failed or timed out
        """
        client, account = await self._active_account(user_id, platform)
        try:
            return await self._call(
                account, lambda c, current: c.get_post_analytics(current, post_id)
            )
        except asyncio.TimeoutError as e:
            raise PlatformError(
                f"{client.config.name} did not respond within {self.call_timeout:g}s",
                platform=client.platform,
                error_code="timeout",
            ) from e

    async def collect_analytics(self, user_id: str) -> AnalyticsResult:
        """
        Capture one analytics snapshot per active linked account.

        Accounts whose call fails get no snapshot and appear in ``failures``.

        Raises:
            AccountLookupError: Linked accounts could not be read
        """
        accounts = await self._active_accounts(user_id)

        with Timer("collect_analytics", logger):
            outcomes = await self._fan_out(
                accounts,
                lambda client, account: client.get_account_analytics(account),
            )

        result = AnalyticsResult()
        for account, outcome in outcomes:
            if isinstance(outcome, BaseException):
                result.failures.append(self._failure(account.platform, outcome))
                continue

            snapshot = AnalyticsSnapshot(
                id=str(uuid.uuid4()),
                account_id=account.id,
                user_id=user_id,
                platform=account.platform,
                **outcome.model_dump(),
            )
            try:
                await self._snapshots.append(snapshot)
            except StorageError as e:
                result.failures.append(
                    PartialAggregationFailure(
                        platform=account.platform,
                        error_type=type(e).__name__,
                        reason=e.message,
                    )
                )
                continue
            result.snapshots.append(snapshot)

        return result

    async def analytics_history(
        self,
        user_id: str,
        platform: Union[SocialPlatform, str],
        limit: int = 30,
    ) -> List[AnalyticsSnapshot]:
        """
        Stored snapshots for the user's account on ``platform``, newest first.

        History outlives deactivation, so a disconnected account still has it.

        Raises:
            AccountNotLinkedError: The user never linked ``platform``
            AccountLookupError: Storage could not be read
        """
        client = self._registry.get(platform)
        try:
            account = await self._accounts.get_account(user_id, client.platform)
        except StorageError as e:
            raise AccountLookupError() from e
        if account is None:
            raise AccountNotLinkedError(
                f"No {client.config.name} account linked",
                details={"platform": client.platform.value},
            )
        try:
            return await self._snapshots.list_for_account(account.id, limit=limit)
        except StorageError as e:
            logger.error(f"Could not read analytics history for account {account.id}")
            raise AccountLookupError() from e

    # =========================================================================
    # Accounts
    # =========================================================================

    async def list_accounts(self, user_id: str) -> List[LinkedAccountView]:
        """Active linked accounts without their tokens."""
        accounts = await self._active_accounts(user_id)
        return [LinkedAccountView.from_account(account) for account in accounts]
