"""
WhatsApp Message Normalization

Converts whatsapp-web.js notifications into the outward event payloads the
gateway pushes to live subscribers and webhooks, and renders QR challenges
for display.

Payload keys keep the whatsapp-web.js (camelCase) spelling because existing
webhook consumers and UI clients depend on it.
"""

import base64
import io
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import qrcode

from .client import WhatsAppMessage

logger = logging.getLogger(__name__)

CONTACT_TYPES = ("vcard", "contact_card", "contact_card_multi")

MediaLoader = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


def render_qr_data_url(qr_data: str) -> str:
    """Render a QR challenge string as a PNG data URL"""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(qr_data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    img_bytes = io.BytesIO()
    img.save(img_bytes, format="PNG")
    encoded = base64.b64encode(img_bytes.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def message_event_payload(msg: WhatsAppMessage) -> Dict[str, Any]:
    """Live `message` event for an incoming message"""
    return {
        "from": msg.from_id,
        "body": msg.body,
        "timestamp": msg.timestamp,
        "hasMedia": msg.has_media,
        "type": msg.type,
    }


def sent_event_payload(msg: WhatsAppMessage) -> Dict[str, Any]:
    """Live `message_sent` event for a message this account created"""
    return {
        "to": msg.to_id,
        "body": msg.body,
        "timestamp": msg.timestamp,
        "hasMedia": msg.has_media,
        "type": msg.type,
    }


def ack_event_payload(raw_message: Any, ack: Any) -> Dict[str, Any]:
    """Live `message_ack` event"""
    message_id = ""
    if isinstance(raw_message, dict):
        message_id = WhatsAppMessage.from_bridge(raw_message).id
    elif raw_message is not None:
        message_id = str(raw_message)
    return {"id": message_id, "ack": ack}


async def build_webhook_payload(
    msg: WhatsAppMessage,
    media_loader: Optional[MediaLoader] = None,
) -> Dict[str, Any]:
    """
    Webhook body for `message_received` / `message_sent`.

    Media messages carry the base64 payload in `body` along with
    `mediaType` and `mediaFilename`. A failed download is reported as
    `mediaError` and never prevents delivery. Locations, contact cards and
    polls get their structured fields copied out.
    """
    data: Dict[str, Any] = {
        "from": msg.from_id,
        "to": msg.to_id,
        "body": msg.body,
        "caption": msg.caption if msg.has_media else "",
        "direction": "outgoing" if msg.from_me else "incoming",
        "timestamp": msg.timestamp,
        "notifyName": msg.notify_name,
        "hasMedia": msg.has_media,
        "type": msg.type,
        "id": msg.id,
    }

    if msg.has_media:
        if media_loader is None:
            data["mediaError"] = "Media download unavailable"
            return data
        try:
            media = await media_loader(msg.id)
            if media:
                data["body"] = media.get("data", "")
                data["mediaType"] = media.get("mimetype", "")
                data["mediaFilename"] = media.get("filename") or ""
        except Exception as e:
            logger.error(f"Error downloading media for message {msg.id}: {e}")
            data["mediaError"] = "Failed to download media"

    elif msg.type == "location" and msg.location:
        data["location"] = {
            "latitude": msg.location.get("latitude"),
            "longitude": msg.location.get("longitude"),
            "description": msg.location.get("description") or "",
        }

    elif msg.type in CONTACT_TYPES:
        data["vcard"] = msg.body
        data["contacts"] = list(msg.vcard_list) or [msg.body]

    elif msg.type == "poll_creation":
        data["pollName"] = msg.poll_name
        data["pollOptions"] = list(msg.poll_options)

    return data
