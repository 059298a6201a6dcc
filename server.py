"""
Backend server for the social dashboard.
Provides the social account integration API and the realtime channel.

Run with ``uvicorn server:app``; ``create_app`` builds isolated apps for tests.
"""

import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import sentry_sdk
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

load_dotenv()

# Handlers must exist before the app modules create their loggers.
from socialdash.utils.logging import setup_logging

logger = setup_logging(service_name="social-dashboard-api")

from app.error_handlers import register_exception_handlers
from app.middleware import RequestIDMiddleware
from app.routes import health_router, social_router, websocket_router
from socialdash.config import Settings, get_settings
from socialdash.realtime import RealtimeChannel
from socialdash.social import SocialServices, build_services
from socialdash.storage import ensure_schema

SENSITIVE_KEYS = [
    "password", "secret", "token", "authorization", "bearer", "credential", "code",
]


def filter_sensitive_breadcrumbs(crumb, hint):
    """
    Filter OAuth codes, tokens and secrets from Sentry breadcrumbs.

    Graph API calls carry ``access_token`` in the query string, so HTTP
    breadcrumb URLs are scrubbed parameter by parameter.
    """
    if crumb.get("category") == "httplib" or crumb.get("category") == "http":
        data = crumb.get("data")
        if isinstance(data, dict) and "url" in data:
            for key in SENSITIVE_KEYS:
                pattern = re.compile(f"([?&][^=&]*{key}[^=&]*=)[^&]*", re.IGNORECASE)
                data["url"] = pattern.sub(r"\1[FILTERED]", data["url"])

    if crumb.get("category") in ("console", "log") and "message" in crumb:
        message = str(crumb["message"]).lower()
        if any(key in message for key in ("access_token", "refresh_token", "client_secret")):
            crumb["message"] = "[FILTERED - may contain sensitive data]"

    return crumb


def init_sentry(settings: Settings) -> bool:
    """Initialize Sentry when SENTRY_DSN is set."""
    if not settings.app.sentry_dsn:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.app.sentry_dsn,
        environment=settings.app.environment,
        traces_sample_rate=settings.app.sentry_traces_sample_rate,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        before_breadcrumb=filter_sensitive_breadcrumbs,
        send_default_pii=False,
        attach_stacktrace=True,
    )
    logger.info(f"Sentry initialized for environment: {settings.app.environment}")
    return True


# =============================================================================
# Application Factory
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open storage pools on startup and close them, with the websocket tasks, on shutdown."""
    services: SocialServices = app.state.services
    await ensure_schema(services.database)
    logger.info("Social dashboard started", extra=app.state.settings.get_config_summary())

    yield

    try:
        await app.state.channel.close()
    except Exception as e:
        logger.warning("Failed to close realtime channel: %s", e)
    try:
        await services.close()
    except Exception as e:
        logger.warning("Failed to close storage connections: %s", e)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    services: Optional[SocialServices] = None,
    channel: Optional[RealtimeChannel] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use instead of the environment
        transport: httpx transport for every platform client (tests)
        services: Prebuilt services (tests)
        channel: Prebuilt realtime channel (tests)
    """
    settings = settings or get_settings()

    application = FastAPI(
        title="Social Dashboard API",
        description=(
            "Links Facebook, Instagram and TikTok accounts and aggregates "
            "mentions, publishing and analytics across them."
        ),
        version="1.0.0",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Liveness and dependency status"},
            {"name": "social", "description": "Account linking, mentions, publishing and analytics"},
            {"name": "websocket", "description": "Realtime dashboard updates"},
        ],
    )

    application.state.settings = settings
    application.state.services = services or build_services(settings, transport=transport)
    application.state.channel = channel or RealtimeChannel(
        tick_interval=settings.realtime.price_tick_interval,
    )

    register_exception_handlers(application)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-User-ID",
            "X-Session-ID",
            "X-Request-ID",
            "Accept",
            "Origin",
        ],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )
    application.add_middleware(RequestIDMiddleware)

    application.include_router(health_router)
    application.include_router(social_router)
    application.include_router(websocket_router)

    return application


init_sentry(get_settings())
app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "server:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        reload=os.environ.get("ENVIRONMENT", "development") == "development",
    )
