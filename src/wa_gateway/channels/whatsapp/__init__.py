"""
WhatsApp Channel

Client handles for the whatsapp-web.js bridge, client options and message
normalization.
"""

from .client import (
    BridgeChatClient,
    BridgeClientFactory,
    ChatClient,
    ChatClientFactory,
    ClientNotification,
    NotificationKind,
    WhatsAppMessage,
)
from .config import ClientOptions, find_browser_executable
from .normalize import build_webhook_payload, render_qr_data_url

__all__ = [
    "BridgeChatClient",
    "BridgeClientFactory",
    "ChatClient",
    "ChatClientFactory",
    "ClientNotification",
    "NotificationKind",
    "WhatsAppMessage",
    "ClientOptions",
    "find_browser_executable",
    "build_webhook_payload",
    "render_qr_data_url",
]
