"""
Exception handlers that turn failures into the API's error body.

Every error leaves the API as::

    {"success": false, "error": "...", "error_code": "...", "details": {...}}

``details`` is omitted when empty and only ever carries whitelisted keys,
so provider payloads and token values cannot leak through it.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from socialdash.config import get_settings
from socialdash.exceptions import ErrorCode, SocialDashError, UnknownPlatformError
from socialdash.social.platforms import PlatformError

logger = logging.getLogger(__name__)

SAFE_DETAIL_KEYS = frozenset({"field", "platform", "errors", "error_reference", "sentry_event_id"})

MAX_MESSAGE_LENGTH = 500
MAX_LISTED_ERRORS = 10

GENERIC_MESSAGE = "The request could not be completed"
PRODUCTION_CRASH_MESSAGE = "An unexpected error occurred. Please try again later."

# A message naming a credential is dropped wholesale; the value may
# follow the name in any format.
_CREDENTIAL_WORDS = re.compile(
    r"secret|password|api[_-]?key|access[_-]?token|refresh[_-]?token|bearer|credential",
    re.IGNORECASE,
)

# Infrastructure details are masked in place.
_MASKS = (
    (re.compile(r"\b(?:postgres(?:ql)?|redis|rediss)://\S+", re.IGNORECASE), "[dsn]"),
    (re.compile(r"(?:/home|/Users|/var|/etc|/srv|/opt)/\S*"), "[path]"),
    (re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}(?::\d+)?\b"), "[ip]"),
)

_LOCATION_PREFIXES = ("body", "query", "path", "header", "cookie")


def sanitize_error_message(message: Optional[str]) -> Optional[str]:
    """Make an error message safe to show to API clients."""
    if not message:
        return message
    if _CREDENTIAL_WORDS.search(message):
        return GENERIC_MESSAGE

    for pattern, mask in _MASKS:
        message = pattern.sub(mask, message)

    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[:MAX_MESSAGE_LENGTH] + "..."
    return message


def sanitize_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop non-whitelisted keys and anything that is not a plain value."""
    clean: Dict[str, Any] = {}
    for key, value in (details or {}).items():
        if key not in SAFE_DETAIL_KEYS:
            continue
        if isinstance(value, str):
            clean[key] = sanitize_error_message(value)
        elif isinstance(value, (bool, int, float)):
            clean[key] = value
        elif isinstance(value, list):
            clean[key] = [
                item for item in value if isinstance(item, (str, bool, int, float, dict))
            ][:MAX_LISTED_ERRORS]
    return clean


def _describe_validation_error(field: str, error: Dict[str, Any]) -> str:
    kind = error.get("type", "")
    if kind == "missing":
        return f"Field '{field}' is required"
    if kind == "string_type":
        return f"Field '{field}' must be a string"
    if "enum" in kind.lower():
        return f"Field '{field}' has an invalid value"
    return sanitize_error_message(error.get("msg") or "Invalid value")


def format_pydantic_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """
    Flatten pydantic errors to ``{"field", "message"}`` pairs.

    The request location (body, query, path...) is stripped from the field
    name; only the first ten errors are kept.
    """
    formatted = []
    for error in errors[:MAX_LISTED_ERRORS]:
        parts = [str(part) for part in error.get("loc", ()) if part not in _LOCATION_PREFIXES]
        field = ".".join(parts) or "request"
        formatted.append({"field": field, "message": _describe_validation_error(field, error)})
    return formatted


def create_error_response(
    status_code: int,
    error: str,
    error_code: ErrorCode,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {
        "success": False,
        "error": sanitize_error_message(error),
        "error_code": error_code.value,
    }
    clean_details = sanitize_details(details)
    if clean_details:
        body["details"] = clean_details
    return JSONResponse(status_code=status_code, content=body)


def report_to_sentry(
    exc: Exception,
    request: Request,
    **context: Any,
) -> Optional[str]:
    """Capture ``exc`` in Sentry and return the event id, if Sentry is active."""
    if not sentry_sdk.get_client().is_active():
        return None

    with sentry_sdk.new_scope() as scope:
        scope.set_context("request", {"method": request.method, "path": request.url.path})
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            scope.set_tag("request_id", request_id)
        if context:
            scope.set_context("error", context)
        return sentry_sdk.capture_exception(exc)


async def social_dash_exception_handler(request: Request, exc: SocialDashError) -> JSONResponse:
    route = f"{request.method} {request.url.path}"
    if isinstance(exc, UnknownPlatformError):
        # A missing client means the registry and the enum disagree.
        logger.critical("%s on %s", exc.message, route)
        report_to_sentry(exc, request)
    elif exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, route, exc.message)
        report_to_sentry(exc, request)
    else:
        logger.warning("%s on %s: %s", type(exc).__name__, route, exc.message)

    return create_error_response(exc.status_code, exc.message, exc.error_code, exc.details)


async def platform_exception_handler(request: Request, exc: PlatformError) -> JSONResponse:
    """
    Provider failures on single-platform endpoints become 502s.

    Aggregating endpoints report per-platform failures in their body and
    never raise these.
    """
    platform = exc.platform.value if exc.platform else "unknown"
    logger.warning(
        "%s from %s on %s: %s",
        type(exc).__name__,
        platform,
        request.url.path,
        exc.message,
        extra={"platform": platform, "upstream_status": exc.status_code},
    )
    return create_error_response(
        status.HTTP_502_BAD_GATEWAY,
        exc.message,
        ErrorCode.EXTERNAL_SERVICE_ERROR,
        {"platform": platform},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = format_pydantic_errors(exc.errors())
    logger.info("Rejected %s %s: %d invalid field(s)", request.method, request.url.path, len(errors))

    summary = errors[0]["message"] if len(errors) == 1 else f"{len(errors)} fields failed validation"
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        summary,
        ErrorCode.VALIDATION_ERROR,
        {"errors": errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the traceback and hand the client a short reference."""
    reference = uuid.uuid4().hex[:8]
    logger.exception("Unhandled error [ref:%s] on %s %s", reference, request.method, request.url.path)

    details: Dict[str, Any] = {"error_reference": reference}
    event_id = report_to_sentry(exc, request, error_reference=reference)
    if event_id:
        details["sentry_event_id"] = event_id

    if get_settings().is_production:
        message = PRODUCTION_CRASH_MESSAGE
    else:
        message = f"Internal server error: {type(exc).__name__}"
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        message,
        ErrorCode.INTERNAL_ERROR,
        details,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SocialDashError, social_dash_exception_handler)
    app.add_exception_handler(PlatformError, platform_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
