"""
Logging setup for the social dashboard.

Every handler installed by ``setup_logging`` carries two filters: one that
stamps the current request and user onto the record, and one that scrubs
provider credentials out of the message. Production output is one JSON
object per line; local output is a colored single-line format.
"""

import json
import logging
import os
import re
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

REDACTED = "[REDACTED]"

# Key names whose values are credentials, as they appear in Graph API
# query strings, TikTok token responses and our own log extras.
CREDENTIAL_FIELDS = (
    "access_token",
    "refresh_token",
    "fb_exchange_token",
    "client_secret",
    "appsecret_proof",
)

_FIELD_VALUE = re.compile(
    r"(?:" + "|".join(CREDENTIAL_FIELDS) + r")[\"']?\s*[:=]\s*[\"']?[\w.|%-]+",
    re.IGNORECASE,
)
_BEARER = re.compile(r"bearer\s+[\w.-]+", re.IGNORECASE)
_AUTH_HEADER = re.compile(r"authorization[\"']?\s*[:=]\s*[\"']?[^\s,}]+", re.IGNORECASE)
_JWT = re.compile(r"eyJ[\w-]+\.eyJ[\w-]+\.[\w-]+")

# Bearer runs before the header pattern so the header match swallows the marker.
_SCRUBBERS = (_FIELD_VALUE, _BEARER, _AUTH_HEADER, _JWT)

# Attributes every LogRecord has; anything else was passed via extra={}.
_BUILTIN_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "request_id", "user_id"}

# Third-party loggers that are chatty at INFO. httpx logs full URLs,
# and Graph API URLs carry the access token.
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "asyncio")


def redact_sensitive_data(message: str) -> str:
    """Replace provider credentials in ``message`` with ``[REDACTED]``."""
    if not message:
        return message
    for pattern in _SCRUBBERS:
        message = pattern.sub(REDACTED, message)
    return message


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _BUILTIN_ATTRS and not key.startswith("_")
    }


class RequestContextFilter(logging.Filter):
    """Stamp request_id and user_id from the current context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        record.user_id = user_id_var.get() or "-"
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub credentials from the message template and its string arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = redact_sensitive_data(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                redact_sensitive_data(value) if isinstance(value, str) else value
                for value in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with caller extras nested under ``extra``."""

    def __init__(self, service_name: str = "social-dashboard-api"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "request_id": getattr(record, "request_id", "-"),
            "user_id": getattr(record, "user_id", "-"),
        }
        if record.levelno >= logging.ERROR:
            payload["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extras = _record_extras(record)
        if extras:
            payload["extra"] = extras
        return json.dumps(payload, default=str, ensure_ascii=False)


class DevelopmentFormatter(logging.Formatter):
    """Colored ``HH:MM:SS LEVEL logger (request/user) message key=value`` lines."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = time.strftime("%H:%M:%S", time.localtime(record.created))
        context = "/".join(
            str(getattr(record, attr, "-"))[:8] for attr in ("request_id", "user_id")
        )

        line = (
            f"{self.DIM}{clock}{self.RESET} {color}{record.levelname:<8}{self.RESET} "
            f"{record.name} {self.DIM}({context}){self.RESET} {record.getMessage()}"
        )
        extras = _record_extras(record)
        if extras:
            pairs = " ".join(f"{key}={value!r}" for key, value in extras.items())
            line = f"{line} {self.DIM}{pairs}{self.RESET}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _level_from_env() -> int:
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _json_from_env() -> bool:
    if os.environ.get("LOG_FORMAT_JSON", "").lower() in ("1", "true", "yes"):
        return True
    return os.environ.get("ENVIRONMENT", "development").lower() in ("prod", "production")


def setup_logging(
    service_name: str = "social-dashboard-api",
    log_level: Optional[int] = None,
    force_json: bool = False,
) -> logging.Logger:
    """
    Install a single stdout handler on the root logger.

    Args:
        service_name: Value of the ``service`` field in JSON output
        log_level: Explicit level; LOG_LEVEL from the environment otherwise
        force_json: Emit JSON even outside production

    Returns:
        The root logger
    """
    level = _level_from_env() if log_level is None else log_level
    as_json = force_json or _json_from_env()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JSONFormatter(service_name) if as_json else DevelopmentFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(
        "Logging ready",
        extra={"log_level": logging.getLevelName(level), "json": as_json, "service": service_name},
    )
    return root


def set_request_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """Bind a request id and/or user id to the running task's context."""
    if request_id is not None:
        request_id_var.set(request_id)
    if user_id is not None:
        user_id_var.set(user_id)


def clear_request_context() -> None:
    request_id_var.set(None)
    user_id_var.set(None)


class Timer:
    """
    Measure a block and log how long it took.

        with Timer("fetch_mentions", logger) as timer:
            ...
        timer.elapsed_ms
    """

    def __init__(
        self,
        name: str,
        logger: Optional[logging.Logger] = None,
        log_level: int = logging.DEBUG,
    ):
        self.name = name
        self.logger = logger
        self.log_level = log_level
        self.elapsed_ms: float = 0.0
        self._started = 0.0

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000
        if self.logger is None:
            return
        self.logger.log(
            self.log_level,
            "%s finished in %.1fms",
            self.name,
            self.elapsed_ms,
            extra={
                "operation": self.name,
                "duration_ms": round(self.elapsed_ms, 2),
                "success": exc_type is None,
            },
        )
