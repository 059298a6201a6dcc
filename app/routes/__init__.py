"""API routes for the social dashboard."""

from .health import router as health_router
from .social import router as social_router
from .websocket import router as websocket_router

__all__ = [
    "health_router",
    "social_router",
    "websocket_router",
]
