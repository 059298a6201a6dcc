"""
Realtime websocket channel.
"""

from .channel import (
    NEW_COMMENT,
    NEW_POST,
    STOCK_UPDATE,
    RealtimeChannel,
    Subscriber,
)

__all__ = [
    "NEW_COMMENT",
    "NEW_POST",
    "STOCK_UPDATE",
    "RealtimeChannel",
    "Subscriber",
]
