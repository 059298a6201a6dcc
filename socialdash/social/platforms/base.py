"""
Common machinery for the Facebook, Instagram and TikTok clients.

Defines the capability set every provider client implements and the
error types provider failures are normalized into. No raw httpx exception
or provider response shape escapes a client.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Type, Union
from urllib.parse import urlencode

import httpx

from socialdash.types.social import (
    AccountAnalytics,
    OAuthTokens,
    PlatformConfig,
    PlatformProfile,
    PostAnalytics,
    PublishRequest,
    SocialAccount,
    SocialNotification,
    SocialPlatform,
    UnifiedPost,
    utcnow,
)


class PlatformError(Exception):
    """A provider call failed; carries the platform and the provider's own code."""

    def __init__(
        self,
        message: str,
        platform: Optional[SocialPlatform] = None,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        raw_error: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.error_code = error_code
        self.status_code = status_code
        self.raw_error = raw_error


class PlatformAuthError(PlatformError):
    """The provider rejected the access token on a token-bearing call."""

    pass


class AuthExchangeError(PlatformError):
    """Authorization-code exchange failed. Codes are single-use; never retried."""

    pass


class TokenRefreshError(PlatformError):
    """Refreshing an access token failed; the account must be reconnected."""

    pass


class PublishError(PlatformError):
    """The provider rejected a publish."""

    @property
    def reason(self) -> str:
        return self.message


class BasePlatform(ABC):
    """
    One provider client: OAuth, reads, publishing and analytics.

    Each call opens a short-lived ``httpx.AsyncClient``; tests inject an
    ``httpx.MockTransport`` through ``transport``.
    """

    AUTHORIZATION_URL: str = ""

    def __init__(
        self,
        config: PlatformConfig,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Bind static limits, app credentials and transport options.

        Args:
            config: Static platform limits and scopes
            client_id: OAuth client id / app id
            client_secret: OAuth client secret
            redirect_uri: Callback URL registered with the provider
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport override
        """
        self.config = config
        self.platform = config.platform
        self._client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._timeout = timeout
        self._transport = transport
        self._logger = logging.getLogger(f"{__name__}.{config.platform.value}")

    @property
    def is_configured(self) -> bool:
        """Check if the platform has API credentials."""
        return bool(self._client_id and self._client_secret)

    def _ensure_configured(self, error_cls: Type[PlatformError] = PlatformError) -> None:
        if not self.is_configured:
            raise error_cls(
                f"{self.platform.value} is not configured. Check app credentials.",
                platform=self.platform,
            )

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        *,
        error_cls: Type[PlatformError] = PlatformError,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one request, normalizing transport failures into ``error_cls``."""
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            self._logger.warning(f"{method} {url} timed out after {self._timeout}s")
            raise error_cls(
                f"{self.platform.value} request timed out",
                platform=self.platform,
                error_code="timeout",
            ) from e
        except httpx.HTTPError as e:
            raise error_cls(
                f"{self.platform.value} request failed: {type(e).__name__}",
                platform=self.platform,
                error_code="transport_error",
            ) from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        """Parse a JSON body, tolerating empty or non-JSON responses."""
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text[:500]}

    def _error_details(self, body: Any) -> Tuple[Optional[str], str]:
        """Extract (error_code, message) from a provider error body."""
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                code = error.get("code")
                return (str(code) if code is not None else None, error.get("message") or "")
            if isinstance(error, str):
                return error, body.get("error_description") or body.get("message") or error
            if "message" in body:
                return None, str(body["message"])
        return None, ""

    def _is_auth_failure(self, response: httpx.Response, body: Any) -> bool:
        """Whether a failed response means the access token is no longer valid."""
        return response.status_code == 401

    def _is_not_found(self, response: httpx.Response, body: Any) -> bool:
        return response.status_code == 404

    def _check_response(
        self,
        response: httpx.Response,
        action: str,
        error_cls: Type[PlatformError] = PlatformError,
        detect_auth: bool = True,
    ) -> Any:
        """
        Return the parsed body of a 2xx response or raise.

        Args:
            response: Provider response
            action: Short description used in the error message
            error_cls: Exception type for non-auth failures
            detect_auth: Map invalid-token responses to PlatformAuthError

        Raises:
            PlatformAuthError: Token rejected (only when detect_auth)
            error_cls: Any other non-2xx response
        """
        body = self._json(response)
        if response.is_success:
            return body

        error_code, detail = self._error_details(body)
        message = f"Failed to {action} on {self.config.name}"
        if detail:
            message = f"{message}: {detail}"

        self._logger.warning(
            f"{message} (status {response.status_code})",
            extra={"platform": self.platform.value, "error_code": error_code},
        )

        if detect_auth and self._is_auth_failure(response, body):
            raise PlatformAuthError(
                message,
                platform=self.platform,
                error_code=error_code,
                status_code=response.status_code,
                raw_error=body,
            )

        raise error_cls(
            message,
            platform=self.platform,
            error_code=error_code,
            status_code=response.status_code,
            raw_error=body,
        )

    def _require(
        self,
        data: Any,
        key: str,
        action: str,
        error_cls: Type[PlatformError] = PlatformError,
    ) -> Any:
        """
        Read a field a 2xx body must carry.

        Raises:
            error_cls: The body is not an object or ``key`` is missing/empty
        """
        value = data.get(key) if isinstance(data, dict) else None
        if value is None or value == "":
            self._logger.warning(
                f"{self.config.name} answered {action} without '{key}'",
                extra={"platform": self.platform.value},
            )
            raise error_cls(
                f"Failed to {action} on {self.config.name}: response had no {key}",
                platform=self.platform,
                error_code="malformed_response",
                raw_error=data,
            )
        return value

    # -------------------------------------------------------------------------
    # Normalization helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _parse_timestamp(value: Union[str, int, float, None]) -> datetime:
        """
        Parse provider timestamps into aware UTC datetimes.

        Accepts ISO-8601 strings (including Graph API's ``+0000`` offsets)
        and unix epoch seconds.
        """
        if value is None or value == "":
            return datetime.fromtimestamp(0, tz=timezone.utc)
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        text = str(value).strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        elif len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
            text = f"{text[:-2]}:{text[-2:]}"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    @staticmethod
    def _expires_at(expires_in: Any) -> Optional[datetime]:
        """Absolute expiry from a token response's ``expires_in`` seconds."""
        try:
            seconds = int(expires_in)
        except (TypeError, ValueError):
            return None
        return utcnow() + timedelta(seconds=seconds)

    @staticmethod
    def _int(value: Any) -> int:
        """Coerce a metric to int; missing or malformed metrics are zero."""
        if value is None:
            return 0
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    @staticmethod
    def _float(value: Any) -> float:
        if value is None:
            return 0.0
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    # -------------------------------------------------------------------------
    # OAuth Methods
    # -------------------------------------------------------------------------

    def _authorization_params(self, state: str, scopes: List[str]) -> Dict[str, str]:
        return {
            "client_id": self._client_id or "",
            "redirect_uri": self.redirect_uri,
            "state": state,
            "scope": self.config.scope_separator.join(scopes),
            "response_type": "code",
        }

    async def get_authorization_url(
        self,
        state: str,
        scopes: Optional[List[str]] = None,
    ) -> str:
        """
        Get the provider authorize URL embedding the CSRF state.

        Args:
            state: Single-use nonce issued by the link flow
            scopes: Optional override of the platform's default scopes

        Returns:
            Authorization URL to redirect the user to
        """
        self._ensure_configured()
        params = self._authorization_params(state, scopes or self.config.oauth_scopes)
        return f"{self.AUTHORIZATION_URL}?{urlencode(params)}"

    @abstractmethod
    async def authenticate(self, code: str) -> OAuthTokens:
        """
        Exchange a one-time authorization code for tokens.

        Raises:
            AuthExchangeError: On any non-2xx response or transport failure
        """

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        """
        Obtain a fresh access token.

        Raises:
            TokenRefreshError: The refresh token was rejected or the call failed
        """

    # -------------------------------------------------------------------------
    # Account Methods
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_profile(self, access_token: str) -> PlatformProfile:
        """Fetch the identity behind an access token."""

    # -------------------------------------------------------------------------
    # Content Methods
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_post(
        self,
        account: SocialAccount,
        content: PublishRequest,
    ) -> Tuple[str, str]:
        """
        Publish a post.

        Returns:
            Tuple of (platform_post_id, platform_post_url)

        Raises:
            PublishError: The provider rejected the post
            PlatformAuthError: The access token was rejected
        """

    @abstractmethod
    async def delete_post(self, account: SocialAccount, post_id: str) -> None:
        """Delete a post. A provider "not found" counts as deleted."""

    @abstractmethod
    async def search_posts(self, account: SocialAccount, query: str) -> List[UnifiedPost]:
        """Search public posts mentioning ``query``, normalized."""

    @abstractmethod
    async def get_feed(self, account: SocialAccount) -> List[UnifiedPost]:
        """The account's own recent posts, normalized."""

    @abstractmethod
    async def get_notifications(self, account: SocialAccount) -> List[SocialNotification]:
        """Recent comments and like counts on the account's own posts."""

    def _likes_notification(self, post_id: str, count: Any) -> Optional[SocialNotification]:
        likes = self._int(count)
        if not likes:
            return None
        return SocialNotification(
            platform=self.platform,
            type="likes",
            post_id=post_id,
            count=likes,
            created_at=self._parse_timestamp(None),
        )

    # -------------------------------------------------------------------------
    # Analytics Methods
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_post_analytics(self, account: SocialAccount, post_id: str) -> PostAnalytics:
        """Per-post metrics; unsupported metrics are zero."""

    @abstractmethod
    async def get_account_analytics(self, account: SocialAccount) -> AccountAnalytics:
        """Account-level metrics for an analytics snapshot."""

    # -------------------------------------------------------------------------
    # Validation Methods
    # -------------------------------------------------------------------------

    def validate_content(self, content: PublishRequest) -> List[str]:
        """
        Check a publish request against this platform's limits.

        Returns:
            One message per violation; empty when the request is publishable
        """
        errors = []

        if len(content.content) > self.config.max_text_length:
            errors.append(
                f"{self.config.name} allows at most {self.config.max_text_length} characters"
            )

        if len(content.media) > self.config.max_media_count:
            errors.append(
                f"{self.config.name} allows at most {self.config.max_media_count} attachments"
            )

        if self.config.requires_media and not any(
            m.type == self.config.required_media_type for m in content.media
        ):
            errors.append(
                f"{self.config.name} requires at least one "
                f"{self.config.required_media_type} attachment"
            )

        for media in content.media:
            if media.type not in self.config.supported_media_types:
                errors.append(
                    f"{self.config.name} cannot publish {media.type} attachments"
                )

        return errors

    def _ensure_publishable(self, content: PublishRequest) -> None:
        errors = self.validate_content(content)
        if errors:
            raise PublishError(
                "; ".join(errors),
                platform=self.platform,
                error_code="validation_error",
            )
