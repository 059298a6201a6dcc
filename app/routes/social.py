"""
Social account linking, aggregation and publishing endpoints.

Provides API endpoints for:
- Connecting Facebook, Instagram and TikTok accounts (OAuth flow)
- Cross-platform mentions and feed
- Publishing to several platforms at once
- Post and account analytics
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Cookie, Depends, Header, Query, status
from fastapi.responses import RedirectResponse

from socialdash.exceptions import CsrfMismatchError, StorageError
from socialdash.realtime import NEW_POST, RealtimeChannel
from socialdash.social import AccountLinkFlow, UnifiedContentService
from socialdash.social.link_flow import AUTH_FAILED, CSRF_MISMATCH
from socialdash.types.social import (
    AnalyticsResult,
    AnalyticsSnapshot,
    LinkedAccountView,
    LinkOutcome,
    LinkStart,
    MentionsResult,
    NotificationsResult,
    PlatformPostResult,
    PostAnalytics,
    PublishRequest,
    PublishResult,
    SocialPlatform,
)

from ..dependencies import (
    get_channel,
    get_content_service,
    get_link_flow,
    get_session_id,
    get_user_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/social", tags=["social"])


# =============================================================================
# Account Linking Endpoints
# =============================================================================


@router.get(
    "/{platform}/connect",
    response_model=LinkStart,
    responses={
        400: {"description": "Missing session id"},
        401: {"description": "Missing user id"},
    },
)
async def connect_account(
    platform: SocialPlatform,
    user_id: str = Depends(get_user_id),
    session_id: str = Depends(get_session_id),
    link_flow: AccountLinkFlow = Depends(get_link_flow),
) -> LinkStart:
    """
    Start the OAuth flow for ``platform``.

    Returns the provider authorization URL. The embedded state is bound to
    the caller's session and is valid for a single callback.
    """
    return await link_flow.start_link(user_id, platform, session_id)


@router.get(
    "/{platform}/callback",
    response_class=RedirectResponse,
    status_code=status.HTTP_307_TEMPORARY_REDIRECT,
)
async def oauth_callback(
    platform: SocialPlatform,
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    state: Optional[str] = Query(None, description="State echoed by the provider"),
    error: Optional[str] = Query(None, description="Provider error, e.g. access_denied"),
    x_session_id: Optional[str] = Header(None, alias="X-Session-ID"),
    session_id: Optional[str] = Cookie(None),
    link_flow: AccountLinkFlow = Depends(get_link_flow),
) -> RedirectResponse:
    """
    Handle the provider redirect.

    Always answers with a redirect to the dashboard carrying either
    ``connected={platform}`` or ``error={platform}_{reason}``.
    """
    session = (x_session_id or session_id or "").strip()

    if error or not code:
        logger.info(f"{platform.value} authorization declined or missing code: {error}")
        outcome = LinkOutcome(platform=platform, linked=False, error=AUTH_FAILED)
    elif not session:
        logger.warning(f"{platform.value} callback arrived without a session")
        outcome = LinkOutcome(platform=platform, linked=False, error=CSRF_MISMATCH)
    else:
        try:
            outcome = await link_flow.complete_link(code, state, session, platform=platform)
        except CsrfMismatchError:
            outcome = LinkOutcome(platform=platform, linked=False, error=CSRF_MISMATCH)
        except StorageError:
            logger.error(f"{platform.value} account could not be saved after authorization")
            outcome = LinkOutcome(platform=platform, linked=False, error=AUTH_FAILED)

    return RedirectResponse(
        url=link_flow.redirect_url(outcome),
        status_code=status.HTTP_307_TEMPORARY_REDIRECT,
    )


@router.get("/accounts", response_model=List[LinkedAccountView])
async def list_connected_accounts(
    user_id: str = Depends(get_user_id),
    content: UnifiedContentService = Depends(get_content_service),
) -> List[LinkedAccountView]:
    """List the caller's active linked accounts. Tokens are never returned."""
    return await content.list_accounts(user_id)


# =============================================================================
# Aggregation Endpoints
# =============================================================================


@router.get("/mentions", response_model=MentionsResult)
async def get_mentions(
    q: str = Query(..., description="Search term, e.g. a ticker symbol"),
    user_id: str = Depends(get_user_id),
    content: UnifiedContentService = Depends(get_content_service),
) -> MentionsResult:
    """
    Search every linked platform for ``q``.

    Platforms that fail or time out are listed in ``failures``; the rest
    still contribute posts.
    """
    return await content.fetch_mentions(user_id, q)


@router.get("/feed", response_model=MentionsResult)
async def get_feed(
    user_id: str = Depends(get_user_id),
    content: UnifiedContentService = Depends(get_content_service),
) -> MentionsResult:
    return await content.fetch_feed(user_id)


@router.get("/notifications", response_model=NotificationsResult)
async def get_notifications(
    user_id: str = Depends(get_user_id),
    content: UnifiedContentService = Depends(get_content_service),
) -> NotificationsResult:
    """Recent comments and likes on the user's own posts, newest first."""
    return await content.fetch_notifications(user_id)


# =============================================================================
# Publishing Endpoints
# =============================================================================


@router.post("/posts", response_model=PublishResult)
async def publish_post(
    request: PublishRequest,
    user_id: str = Depends(get_user_id),
    content: UnifiedContentService = Depends(get_content_service),
    channel: RealtimeChannel = Depends(get_channel),
) -> PublishResult:
    """
    Publish to the requested platforms (or every linked one).

    Returns one result per target platform. Each successful post is pushed
    to the caller's open dashboards as ``NEW_POST``.
    """
    result = await content.publish(user_id, request)

    for item in result.results:
        if not item.success:
            continue
        await channel.publish_event(
            NEW_POST,
            {
                "platform": item.platform.value,
                "post_id": item.post_id,
                "url": item.url,
                "content": request.content,
            },
            user_id=user_id,
        )

    return result


@router.delete("/posts/{platform}/{post_id}", response_model=PlatformPostResult)
async def delete_post(
    platform: SocialPlatform,
    post_id: str,
    user_id: str = Depends(get_user_id),
    content: UnifiedContentService = Depends(get_content_service),
) -> PlatformPostResult:
    """Delete a post. Deleting an already-deleted post succeeds."""
    return await content.delete_post(user_id, platform, post_id)


# =============================================================================
# Analytics Endpoints
# =============================================================================


@router.get(
    "/posts/{platform}/{post_id}/analytics",
    response_model=PostAnalytics,
    responses={
        404: {"description": "No linked account on this platform"},
        502: {"description": "The provider call failed"},
    },
)
async def get_post_analytics(
    platform: SocialPlatform,
    post_id: str,
    user_id: str = Depends(get_user_id),
    content: UnifiedContentService = Depends(get_content_service),
) -> PostAnalytics:
    return await content.get_post_analytics(user_id, platform, post_id)


@router.get("/analytics", response_model=AnalyticsResult)
async def collect_analytics(
    user_id: str = Depends(get_user_id),
    content: UnifiedContentService = Depends(get_content_service),
) -> AnalyticsResult:
    """
    Capture an analytics snapshot for every linked account.

    Each call appends new snapshots; earlier ones are never modified.
    """
    return await content.collect_analytics(user_id)


@router.get(
    "/analytics/history",
    response_model=List[AnalyticsSnapshot],
    responses={404: {"description": "The platform was never linked"}},
)
async def get_analytics_history(
    platform: SocialPlatform = Query(...),
    limit: int = Query(30, ge=1, le=365),
    user_id: str = Depends(get_user_id),
    content: UnifiedContentService = Depends(get_content_service),
) -> List[AnalyticsSnapshot]:
    """Stored snapshots for one platform, newest first."""
    return await content.analytics_history(user_id, platform, limit=limit)
