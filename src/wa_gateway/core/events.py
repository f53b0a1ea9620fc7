"""
Gateway Events

Outward event vocabulary and the subscriber bus live UI clients (WebSocket)
attach to. Webhook names differ from the live event names for historical
reasons and are kept separately.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class GatewayEvent(str, Enum):
    """Events pushed to live subscribers"""
    QR = "qr"
    AUTHENTICATED = "authenticated"
    STATUS = "status"
    READY = "ready"
    MESSAGE = "message"
    MESSAGE_SENT = "message_sent"
    MESSAGE_ACK = "message_ack"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    SESSION_FORCE_CLEARED = "session-force-cleared"
    SESSIONS_UPDATED = "sessions-updated"
    SESSION_INIT_FAILED = "session-init-failed"
    ERROR = "error"


class WebhookEvent(str, Enum):
    """Event names delivered to the configured webhook"""
    QR_GENERATED = "qr_generated"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    INITIALIZATION_ERROR = "initialization_error"
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_SENT = "message_sent"
    TEST = "test"


EventHandler = Callable[[str, Dict[str, Any]], Union[None, Awaitable[None]]]


class EventBus:
    """Fan-out of gateway events to registered subscribers"""

    def __init__(self):
        self._subscribers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a function that removes it again"""
        self._subscribers.append(handler)

        def unsubscribe():
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: Union[GatewayEvent, str], data: Optional[Dict[str, Any]] = None) -> None:
        """Deliver an event to every subscriber; subscriber errors are logged only"""
        name = event.value if isinstance(event, GatewayEvent) else event
        payload = data if data is not None else {}

        for handler in list(self._subscribers):
            try:
                result = handler(name, payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in event subscriber for '{name}': {e}")

    async def status(self, status: str, message: str) -> None:
        await self.publish(GatewayEvent.STATUS, {"status": status, "message": message})
