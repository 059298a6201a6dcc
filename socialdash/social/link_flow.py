"""
OAuth account linking.

start_link issues a single-use state nonce bound to the browser session
and returns the provider's authorize URL. complete_link consumes the
nonce, exchanges the code and upserts the SocialAccount.
"""

import logging
import secrets
from typing import Optional, Union
from urllib.parse import urlencode

from socialdash.exceptions import CsrfMismatchError
from socialdash.storage import NonceStore, PendingLink, SocialAccountStore
from socialdash.types.social import LinkOutcome, LinkStart, SocialPlatform

from .platforms import PlatformError
from .registry import PlatformRegistry

logger = logging.getLogger(__name__)

AUTH_FAILED = "auth_failed"
CSRF_MISMATCH = "csrf_mismatch"


class AccountLinkFlow:
    """Authorization-code linking for all registered platforms."""

    def __init__(
        self,
        registry: PlatformRegistry,
        store: SocialAccountStore,
        nonces: NonceStore,
        dashboard_path: str = "/dashboard",
    ) -> None:
        self._registry = registry
        self._store = store
        self._nonces = nonces
        self._dashboard_path = dashboard_path

    async def start_link(
        self,
        user_id: str,
        platform: Union[SocialPlatform, str],
        session_id: str,
    ) -> LinkStart:
        """
        Begin linking ``platform`` for ``user_id``.

        A later start_link for the same session supersedes this one.

        Args:
            user_id: The dashboard user
            platform: Platform to link
            session_id: Browser session the callback must arrive on

        Returns:
            LinkStart with the authorize URL and the embedded state
        """
        client = self._registry.get(platform)
        nonce = secrets.token_urlsafe(32)

        authorization_url = await client.get_authorization_url(state=nonce)
        await self._nonces.issue(
            session_id,
            PendingLink(nonce=nonce, user_id=user_id, platform=client.platform),
        )

        logger.info(f"Started {client.platform.value} link for user {user_id}")
        return LinkStart(authorization_url=authorization_url, state=nonce)

    async def complete_link(
        self,
        code: str,
        state: Optional[str],
        session_id: str,
        platform: Optional[Union[SocialPlatform, str]] = None,
    ) -> LinkOutcome:
        """
        Finish linking after the provider redirects back.

        Args:
            code: One-time authorization code
            state: State echoed by the provider
            session_id: Session the callback arrived on
            platform: Platform named by the callback route, if any

        Returns:
            LinkOutcome; ``linked`` is False when the code exchange failed

        Raises:
            CsrfMismatchError: State absent, expired, reused, superseded or
                issued for a different platform. Nothing is written.
        """
        pending = await self._nonces.consume(session_id)

        if pending is None or not state or not secrets.compare_digest(
            pending.nonce.encode(), state.encode()
        ):
            logger.warning(f"OAuth state mismatch for session {session_id[:8]}")
            raise CsrfMismatchError()

        client = self._registry.get(pending.platform)
        if platform is not None and self._registry.get(platform).platform != client.platform:
            logger.warning(
                f"OAuth callback for {platform} used state issued for {pending.platform.value}"
            )
            raise CsrfMismatchError()

        try:
            tokens = await client.authenticate(code)
            profile = await client.get_profile(tokens.access_token)
        except PlatformError as e:
            logger.warning(
                f"{client.platform.value} link failed for user {pending.user_id}: {e.message}",
                extra={"status_code": e.status_code},
            )
            return LinkOutcome(platform=client.platform, linked=False, error=AUTH_FAILED)

        account = await self._store.upsert_account(
            user_id=pending.user_id,
            platform=client.platform,
            profile=profile,
            tokens=tokens,
        )
        logger.info(
            f"Linked {client.platform.value} account @{account.handle} for user {pending.user_id}"
        )
        return LinkOutcome(platform=client.platform, linked=True, account=account)

    def redirect_url(self, outcome: LinkOutcome) -> str:
        """Dashboard URL reporting the outcome via ``connected``/``error``."""
        platform = outcome.platform.value
        if outcome.linked:
            query = {"connected": platform}
        else:
            query = {"error": f"{platform}_{outcome.error or AUTH_FAILED}"}
        return f"{self._dashboard_path}?{urlencode(query)}"
