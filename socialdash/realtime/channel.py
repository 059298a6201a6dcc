"""
Realtime websocket channel.

Pushes unified updates (new posts, new comments) and simulated stock price
ticks to connected dashboards. Independent of the platform layer.
"""

import asyncio
import json
import logging
import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import WebSocket
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

# Message types
SUBSCRIBE_STOCK = "SUBSCRIBE_STOCK"
UNSUBSCRIBE_STOCK = "UNSUBSCRIBE_STOCK"
STOCK_UPDATE = "STOCK_UPDATE"
NEW_POST = "NEW_POST"
NEW_COMMENT = "NEW_COMMENT"
PING = "PING"
PONG = "PONG"
ERROR = "ERROR"

SYMBOL_PATTERN = re.compile(r"^[A-Z][A-Z0-9.\-]{0,9}$")


def simulated_price(symbol: str) -> float:
    """Random price in [100, 200)."""
    return round(random.uniform(100, 200), 2)


class ClientMessage(BaseModel):
    """Inbound websocket message."""

    type: str
    symbol: Optional[str] = None


@dataclass
class Subscriber:
    """A connected websocket and its per-connection subscriptions."""

    websocket: WebSocket
    user_id: Optional[str] = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stock_tasks: Dict[str, asyncio.Task] = field(default_factory=dict)

    def cancel_tasks(self) -> None:
        for task in self.stock_tasks.values():
            task.cancel()
        self.stock_tasks.clear()


class RealtimeChannel:
    """
    Subscriber list with per-subscriber failure isolation.

    A send that fails drops only that subscriber; the rest still receive
    the message.
    """

    def __init__(
        self,
        tick_interval: float = 5.0,
        price_source: Callable[[str], float] = simulated_price,
    ) -> None:
        self.tick_interval = tick_interval
        self._price_source = price_source
        self._subscribers: Dict[int, Subscriber] = {}

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, websocket: WebSocket, user_id: Optional[str] = None) -> Subscriber:
        """Accept and register a websocket."""
        await websocket.accept()
        subscriber = Subscriber(websocket=websocket, user_id=user_id)
        self._subscribers[id(websocket)] = subscriber
        logger.debug(f"WebSocket connected ({len(self._subscribers)} active)")
        return subscriber

    def disconnect(self, websocket: WebSocket) -> None:
        """Unregister a websocket and cancel its price ticks."""
        subscriber = self._subscribers.pop(id(websocket), None)
        if subscriber is not None:
            subscriber.cancel_tasks()
            logger.debug(f"WebSocket disconnected ({len(self._subscribers)} active)")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # =========================================================================
    # Outbound
    # =========================================================================

    async def broadcast(self, message: Dict[str, Any], user_id: Optional[str] = None) -> int:
        """
        Send ``message`` to every subscriber, or only ``user_id``'s.

        Returns:
            Number of subscribers the message reached
        """
        targets: List[Subscriber] = [
            s for s in list(self._subscribers.values())
            if user_id is None or s.user_id == user_id
        ]

        delivered = 0
        dead: List[WebSocket] = []
        for subscriber in targets:
            try:
                await subscriber.websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Failed to send WebSocket message: {e}")
                dead.append(subscriber.websocket)

        for websocket in dead:
            self.disconnect(websocket)

        return delivered

    async def publish_event(
        self,
        event_type: str,
        payload: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> int:
        """Broadcast a typed event such as NEW_POST or NEW_COMMENT."""
        return await self.broadcast(
            {
                "type": event_type,
                "data": payload,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            user_id=user_id,
        )

    # =========================================================================
    # Inbound
    # =========================================================================

    async def _send_error(self, websocket: WebSocket, detail: str) -> None:
        await websocket.send_json({"type": ERROR, "message": detail})

    async def handle_message(self, websocket: WebSocket, raw: str) -> None:
        """
        Dispatch one inbound message.

        Malformed JSON, unknown types and bad symbols get an ERROR reply;
        the connection stays open.
        """
        try:
            message = ClientMessage.model_validate(json.loads(raw))
        except json.JSONDecodeError:
            logger.warning("Invalid JSON received on WebSocket")
            await self._send_error(websocket, "Invalid JSON format")
            return
        except ValidationError:
            await self._send_error(websocket, "Message must be an object with a 'type'")
            return

        subscriber = self._subscribers.get(id(websocket))
        if subscriber is None:
            return

        if message.type == PING:
            await websocket.send_json({"type": PONG})
        elif message.type == SUBSCRIBE_STOCK:
            symbol = (message.symbol or "").strip().upper()
            if not SYMBOL_PATTERN.match(symbol):
                await self._send_error(websocket, "Invalid or missing symbol")
                return
            self.subscribe_stock(subscriber, symbol)
        elif message.type == UNSUBSCRIBE_STOCK:
            symbol = (message.symbol or "").strip().upper()
            task = subscriber.stock_tasks.pop(symbol, None)
            if task is not None:
                task.cancel()
        else:
            await self._send_error(websocket, f"Unknown message type: {message.type}")

    def subscribe_stock(self, subscriber: Subscriber, symbol: str) -> None:
        """Start price ticks for ``symbol``; resubscribing is a no-op."""
        if symbol in subscriber.stock_tasks:
            return
        subscriber.stock_tasks[symbol] = asyncio.create_task(
            self._stock_ticker(subscriber, symbol)
        )
        logger.debug(f"Subscribed to {symbol} price updates")

    async def _stock_ticker(self, subscriber: Subscriber, symbol: str) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            message = {
                "type": STOCK_UPDATE,
                "symbol": symbol,
                "data": {
                    "price": self._price_source(symbol),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            }
            try:
                await subscriber.websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Stopping {symbol} ticks, send failed: {e}")
                subscriber.stock_tasks.pop(symbol, None)
                self.disconnect(subscriber.websocket)
                return

    async def close(self) -> None:
        """Cancel all tick tasks (application shutdown)."""
        for subscriber in list(self._subscribers.values()):
            subscriber.cancel_tasks()
        self._subscribers.clear()
