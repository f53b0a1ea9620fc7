"""
Event Fan-out

Turns notifications from a client handle into the gateway's outward events
(live subscribers + webhook). Each handle gets its own dispatch function,
bound to the handle's generation; once the controller has moved on to a
newer handle, anything the old one still emits is dropped.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..channels.whatsapp.client import (
    ChatClient,
    ClientNotification,
    NotificationHandler,
    NotificationKind,
    WhatsAppMessage,
)
from ..channels.whatsapp.normalize import (
    ack_event_payload,
    build_webhook_payload,
    message_event_payload,
    render_qr_data_url,
    sent_event_payload,
)
from .events import GatewayEvent, WebhookEvent
from .state import Identity

if TYPE_CHECKING:
    from .lifecycle import LifecycleController

logger = logging.getLogger(__name__)


class EventFanout:
    """Per-generation dispatch of client notifications"""

    def __init__(self, controller: "LifecycleController"):
        self.controller = controller

        self._handlers = {
            NotificationKind.QR: self._on_qr,
            NotificationKind.AUTHENTICATED: self._on_authenticated,
            NotificationKind.LOADING_SCREEN: self._on_loading_screen,
            NotificationKind.READY: self._on_ready,
            NotificationKind.MESSAGE: self._on_message,
            NotificationKind.MESSAGE_CREATE: self._on_message_create,
            NotificationKind.MESSAGE_ACK: self._on_message_ack,
            NotificationKind.AUTH_FAILURE: self._on_auth_failure,
            NotificationKind.DISCONNECTED: self._on_disconnected,
        }

    def bind(self, client: ChatClient, generation: int) -> NotificationHandler:
        """Dispatch function for one handle generation"""

        async def dispatch(notification: ClientNotification) -> None:
            if not self.controller.owns(client, generation):
                logger.debug(
                    f"Dropping '{notification.kind.value}' from stale client generation {generation}"
                )
                return
            handler = self._handlers.get(notification.kind)
            if handler is not None:
                await handler(client, generation, notification)

        return dispatch

    @property
    def events(self):
        return self.controller.events

    @property
    def webhook(self):
        return self.controller.webhook

    @property
    def status(self):
        return self.controller.status

    # =========================================================================
    # LIFECYCLE NOTIFICATIONS
    # =========================================================================

    async def _on_qr(self, client: ChatClient, generation: int, n: ClientNotification):
        qr = n.arg(0) or ""
        logger.info("QR Code received")
        self.status.mark_qr(render_qr_data_url(qr))
        await self.events.publish(GatewayEvent.QR, {"qr": self.status.qr})
        self.webhook.dispatch(WebhookEvent.QR_GENERATED, {"qr": qr})

    async def _on_authenticated(self, client: ChatClient, generation: int, n: ClientNotification):
        logger.info("Client authenticated")
        self.status.mark_authenticated()
        await self.events.publish(GatewayEvent.AUTHENTICATED, {})
        await self.events.status("loading", "Authenticated! Loading WhatsApp data...")
        self.webhook.dispatch(WebhookEvent.AUTHENTICATED, {})
        # Cached sessions may skip the loading screen entirely
        self.controller.poller.arm(generation)

    async def _on_loading_screen(self, client: ChatClient, generation: int, n: ClientNotification):
        percent, message = n.arg(0, 0), n.arg(1, "")
        logger.info(f"WhatsApp loading: {percent}% - {message}")
        self.status.mark_loading()
        await self.events.status("loading", f"Loading WhatsApp: {percent}% - {message}")

        if _as_percent(percent) >= 100 and not self.status.ready:
            self.controller.poller.loading_complete(generation)

    async def _on_ready(self, client: ChatClient, generation: int, n: ClientNotification):
        logger.info("WhatsApp client is ready")
        await self.finalize_ready(generation, n.arg(0) or client.info)

    async def finalize_ready(self, generation: int, info: Optional[Dict[str, Any]] = None) -> None:
        """
        Mark the client ready and announce it.

        Shared by the native `ready` notification and the fallback poller, and
        idempotent: whichever arrives second is ignored.
        """
        controller = self.controller
        if generation != controller.generation or controller.client is None:
            return
        if self.status.ready:
            logger.debug("Client already ready, ignoring duplicate readiness")
            return

        controller.poller.reset()
        controller.health.stop()

        identity = Identity.from_info(info)
        self.status.mark_ready(identity or Identity.placeholder())
        if controller.current_session:
            controller.auth_failures.pop(controller.current_session, None)

        if identity is None:
            logger.info("Client ready but info not immediately available")
            await self.events.publish(GatewayEvent.READY, Identity.placeholder().to_dict())
            return

        logger.info(f"Logged in as: {identity.pushname}")
        await self.events.publish(GatewayEvent.READY, identity.to_dict())
        self.webhook.dispatch(WebhookEvent.READY, identity.to_dict())

    async def _on_auth_failure(self, client: ChatClient, generation: int, n: ClientNotification):
        await self.controller.handle_auth_failure(n.arg(0) or "", generation)

    async def _on_disconnected(self, client: ChatClient, generation: int, n: ClientNotification):
        await self.controller.handle_disconnected(n.arg(0) or "", generation)

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def _on_message(self, client: ChatClient, generation: int, n: ClientNotification):
        raw = n.arg(0)
        if not isinstance(raw, dict):
            return
        msg = WhatsAppMessage.from_bridge(raw)
        logger.debug(f"Message received from {msg.from_id}")
        await self.events.publish(GatewayEvent.MESSAGE, message_event_payload(msg))
        self._message_webhook(client, msg, WebhookEvent.MESSAGE_RECEIVED)

    async def _on_message_create(self, client: ChatClient, generation: int, n: ClientNotification):
        raw = n.arg(0)
        if not isinstance(raw, dict):
            return
        msg = WhatsAppMessage.from_bridge(raw)
        if not msg.from_me:
            return
        logger.debug(f"Message sent to {msg.to_id}")
        await self.events.publish(GatewayEvent.MESSAGE_SENT, sent_event_payload(msg))
        self._message_webhook(client, msg, WebhookEvent.MESSAGE_SENT)

    async def _on_message_ack(self, client: ChatClient, generation: int, n: ClientNotification):
        await self.events.publish(GatewayEvent.MESSAGE_ACK, ack_event_payload(n.arg(0), n.arg(1)))

    def _message_webhook(self, client: ChatClient, msg: WhatsAppMessage, event: WebhookEvent) -> None:
        # Media downloads can be slow; keep them off the notification path
        if not self.webhook.settings.target_url:
            return
        self.controller.spawn(self._deliver_message(client, msg, event))

    async def _deliver_message(self, client: ChatClient, msg: WhatsAppMessage, event: WebhookEvent):
        try:
            payload = await build_webhook_payload(msg, client.download_media)
        except Exception as e:
            logger.error(f"Error processing message webhook: {e}")
            return
        await self.webhook.deliver(event, payload)


def _as_percent(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
