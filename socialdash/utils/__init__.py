"""Utility modules for the social dashboard."""

from .logging import (
    DevelopmentFormatter,
    JSONFormatter,
    RequestContextFilter,
    SensitiveDataFilter,
    Timer,
    clear_request_context,
    redact_sensitive_data,
    set_request_context,
    setup_logging,
)

__all__ = [
    "DevelopmentFormatter",
    "JSONFormatter",
    "RequestContextFilter",
    "SensitiveDataFilter",
    "Timer",
    "clear_request_context",
    "redact_sensitive_data",
    "set_request_context",
    "setup_logging",
]
