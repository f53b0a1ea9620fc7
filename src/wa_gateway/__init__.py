"""
WhatsApp Session Gateway

Exposes a WhatsApp Web account as a multi-session HTTP/WebSocket API with
webhook delivery, driving whatsapp-web.js through a Node.js bridge.
"""

__version__ = "0.1.0"
