"""
FastAPI dependencies for the social dashboard API.

Identity comes from the external auth layer: the gateway forwards the
authenticated user in ``X-User-ID``. The OAuth link flow binds its state
nonce to the browser session from ``X-Session-ID`` or the ``session_id``
cookie.
"""

import logging
from typing import Optional

from fastapi import Cookie, Depends, Header, Request

from socialdash.config import Settings
from socialdash.exceptions import AuthenticationError, ValidationError
from socialdash.realtime import RealtimeChannel
from socialdash.social import AccountLinkFlow, SocialServices, UnifiedContentService
from socialdash.utils.logging import set_request_context

logger = logging.getLogger(__name__)

DEV_USER_ID = "dev_user"


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_services(request: Request) -> SocialServices:
    return request.app.state.services


def get_content_service(
    services: SocialServices = Depends(get_services),
) -> UnifiedContentService:
    return services.content


def get_link_flow(services: SocialServices = Depends(get_services)) -> AccountLinkFlow:
    return services.link_flow


def get_channel(request: Request) -> RealtimeChannel:
    return request.app.state.channel


async def get_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    settings: Settings = Depends(get_app_settings),
) -> str:
    """
    Resolve the calling user.

    Raises:
        AuthenticationError: No user id and DEV_MODE is off
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        if settings.is_dev_mode and not settings.is_production:
            user_id = DEV_USER_ID
        else:
            raise AuthenticationError()

    set_request_context(user_id=user_id)
    return user_id


async def get_session_id(
    x_session_id: Optional[str] = Header(None, alias="X-Session-ID"),
    session_id: Optional[str] = Cookie(None),
) -> str:
    """
    Resolve the browser session the OAuth state is bound to.

    Raises:
        ValidationError: Neither header nor cookie is present
    """
    resolved = (x_session_id or session_id or "").strip()
    if not resolved:
        raise ValidationError(
            "A session id is required to link an account",
            details={"field": "session_id"},
        )
    return resolved
