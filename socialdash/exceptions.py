"""
Application exceptions for the social dashboard.

Provider failures are modelled by ``PlatformError`` and its subclasses in
``socialdash.social.platforms.base``. Everything else inherits from
``SocialDashError``, which carries the HTTP status the API layer maps it to.

Exception Hierarchy:
    SocialDashError (base, 500)
    ├── ValidationError (400)
    ├── CsrfMismatchError (400)
    ├── AuthenticationError (401)
    ├── AccountNotLinkedError (404)
    ├── UnknownPlatformError (500)
    ├── AccountLookupError (503)
    └── StorageError (503)
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable error identifiers returned in API error bodies."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CSRF_MISMATCH = "CSRF_MISMATCH"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    ACCOUNT_NOT_LINKED = "ACCOUNT_NOT_LINKED"
    UNKNOWN_PLATFORM = "UNKNOWN_PLATFORM"
    ACCOUNT_LOOKUP_FAILED = "ACCOUNT_LOOKUP_FAILED"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"


class SocialDashError(Exception):
    """
    Base for errors raised by the dashboard itself rather than a provider.

    Subclasses pin ``status_code`` and a default code and message; ``details``
    is filtered against a whitelist before it reaches a response body.
    """

    status_code: int = 500
    default_error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.error_code.value}: {self.message}"


class ValidationError(SocialDashError):
    """Raised when request data fails validation."""

    status_code = 400
    default_error_code = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid request data"


class CsrfMismatchError(SocialDashError):
    """
    The OAuth ``state`` did not match the nonce issued for the session.

    Covers absent, expired, superseded and reused nonces. Terminal: the
    authorization code is never exchanged.
    """

    status_code = 400
    default_error_code = ErrorCode.CSRF_MISMATCH
    default_message = "OAuth state does not match this session"


class AuthenticationError(SocialDashError):
    """No user identity was supplied by the auth layer."""

    status_code = 401
    default_error_code = ErrorCode.AUTHENTICATION_REQUIRED
    default_message = "Authentication required"


class AccountNotLinkedError(SocialDashError):
    """The user has no active account on the requested platform."""

    status_code = 404
    default_error_code = ErrorCode.ACCOUNT_NOT_LINKED
    default_message = "Account not linked"


class UnknownPlatformError(SocialDashError):
    """
    A platform identifier with no registered client.

    This indicates a configuration or programming error, not a user
    error, and is never retried.
    """

    status_code = 500
    default_error_code = ErrorCode.UNKNOWN_PLATFORM
    default_message = "Unknown platform"

    def __init__(self, platform: Any, message: Optional[str] = None):
        self.platform = platform
        super().__init__(
            message=message or f"No client registered for platform '{platform}'",
            details={"platform": str(getattr(platform, "value", platform))},
        )


class AccountLookupError(SocialDashError):
    """The user's linked accounts could not be read from storage."""

    status_code = 503
    default_error_code = ErrorCode.ACCOUNT_LOOKUP_FAILED
    default_message = "Linked accounts are temporarily unavailable"


class StorageError(SocialDashError):
    """A durable store (Postgres) could not complete an operation."""

    status_code = 503
    default_error_code = ErrorCode.STORAGE_ERROR
    default_message = "Storage is temporarily unavailable"
