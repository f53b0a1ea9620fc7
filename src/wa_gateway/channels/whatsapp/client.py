"""
WhatsApp Bridge Client

One `BridgeChatClient` is one Client Handle: a whatsapp-web.js `Client`
living inside the Node.js bridge, bound to a single session's LocalAuth
directory.

Architecture:
    LifecycleController <-> BridgeChatClient <-> Bridge (Node.js) <-> WhatsApp Web

Commands go over HTTP; lifecycle and message notifications stream back over
a per-client WebSocket and are delivered, in order, to a single handler as
`ClientNotification` values.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Union

import aiohttp

from ...core.errors import ChatClientError, MediaDownloadFailed
from .config import ClientOptions

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """Notifications the underlying client emits"""
    QR = "qr"
    AUTHENTICATED = "authenticated"
    LOADING_SCREEN = "loading_screen"
    READY = "ready"
    MESSAGE = "message"
    MESSAGE_CREATE = "message_create"
    MESSAGE_ACK = "message_ack"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"


@dataclass
class ClientNotification:
    """A single notification from a client handle"""
    kind: NotificationKind
    args: Tuple[Any, ...] = ()

    def arg(self, index: int, default: Any = None) -> Any:
        return self.args[index] if len(self.args) > index else default

    @classmethod
    def from_bridge(cls, data: Dict[str, Any]) -> Optional["ClientNotification"]:
        """Parse a bridge frame; unknown event names yield None"""
        try:
            kind = NotificationKind(data.get("event"))
        except ValueError:
            return None
        args = data.get("args") or []
        if not isinstance(args, list):
            args = [args]
        return cls(kind=kind, args=tuple(args))


@dataclass
class WhatsAppMessage:
    """Message from the bridge, in whatsapp-web.js shape"""
    id: str
    from_id: str
    to_id: str
    body: str
    timestamp: int
    type: str = "chat"
    has_media: bool = False
    from_me: bool = False
    ack: Optional[int] = None
    caption: str = ""
    notify_name: str = ""
    location: Optional[Dict[str, Any]] = None
    vcard_list: List[str] = field(default_factory=list)
    poll_name: str = ""
    poll_options: List[Any] = field(default_factory=list)

    @classmethod
    def from_bridge(cls, data: Dict[str, Any]) -> "WhatsAppMessage":
        """Create from bridge message format."""
        raw_id = data.get("id", "")
        if isinstance(raw_id, dict):
            raw_id = raw_id.get("_serialized", "")
        extra = data.get("_data") or {}

        return cls(
            id=raw_id,
            from_id=data.get("from", ""),
            to_id=data.get("to", ""),
            body=data.get("body", ""),
            timestamp=data.get("timestamp", 0),
            type=data.get("type", "chat"),
            has_media=data.get("hasMedia", False),
            from_me=data.get("fromMe", False),
            ack=data.get("ack"),
            caption=extra.get("caption") or "",
            notify_name=extra.get("notifyName") or "",
            location=data.get("location"),
            vcard_list=extra.get("vcardList") or [],
            poll_name=extra.get("pollName") or "",
            poll_options=extra.get("pollOptions") or [],
        )


NotificationHandler = Callable[[ClientNotification], Awaitable[None]]


class ChatClient(Protocol):
    """The capability the lifecycle controller drives"""

    info: Optional[Dict[str, Any]]

    def on_notification(self, handler: NotificationHandler) -> None: ...

    async def initialize(self) -> None: ...

    async def destroy(self) -> None: ...

    async def get_state(self) -> Optional[str]: ...

    async def logout(self) -> None: ...

    async def download_media(self, message_id: str) -> Optional[Dict[str, Any]]: ...


class ChatClientFactory(Protocol):
    """Creates a fresh client handle bound to one session's credentials"""

    def create(self, session_id: str, auth_root: Path) -> ChatClient: ...


class BridgeChatClient:
    """
    Client handle backed by the Node.js whatsapp-web.js bridge.

    The bridge must be running (cd bridge/whatsapp-bridge && npm start).
    A handle is never reused after `destroy()`; the controller creates a new
    one instead.
    """

    def __init__(
        self,
        client_id: str,
        data_path: Union[str, Path],
        options: Optional[ClientOptions] = None,
        http_url: str = "http://localhost:3100",
        ws_url: str = "ws://localhost:3101",
        request_timeout: float = 30.0,
        initialize_timeout: float = 180.0,
    ):
        self.client_id = client_id
        self.data_path = str(data_path)
        self.options = options or ClientOptions()
        self.http_url = http_url.rstrip("/")
        self.ws_url = ws_url.rstrip("/")
        self.request_timeout = request_timeout
        self.initialize_timeout = initialize_timeout

        self.info: Optional[Dict[str, Any]] = None
        self._handler: Optional[NotificationHandler] = None
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._listen_task: Optional[asyncio.Task] = None
        self._destroyed = False

    def on_notification(self, handler: NotificationHandler) -> None:
        """Register the single notification handler for this handle"""
        self._handler = handler

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Create the client on the bridge, subscribe to its events and start it"""
        if self._destroyed:
            raise ChatClientError("Client handle was destroyed and cannot be reused")

        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )

        await self._request("POST", "/clients", payload={
            "clientId": self.client_id,
            "dataPath": self.data_path,
            "options": self.options.to_bridge(),
        })

        try:
            self._ws = await self._http_session.ws_connect(
                f"{self.ws_url}/clients/{self.client_id}/events"
            )
        except aiohttp.ClientError as e:
            raise ChatClientError(
                f"Cannot connect to WhatsApp bridge events at {self.ws_url}: {e}",
                kind="bridge_unavailable",
            ) from e

        self._listen_task = asyncio.create_task(self._listen())
        logger.info(f"Subscribed to bridge events for client {self.client_id}")

        await self._request(
            "POST",
            f"/clients/{self.client_id}/initialize",
            timeout=self.initialize_timeout,
        )

    async def destroy(self) -> None:
        """Stop the client on the bridge and release local resources"""
        self._destroyed = True
        try:
            if self._http_session is not None:
                await self._request("POST", f"/clients/{self.client_id}/destroy")
        finally:
            await self._close_local()

    async def logout(self) -> None:
        await self._request("POST", f"/clients/{self.client_id}/logout")

    async def get_state(self) -> Optional[str]:
        """Connection state as reported by WhatsApp Web (e.g. CONNECTED)"""
        data = await self._request("GET", f"/clients/{self.client_id}/state")
        if data.get("info"):
            self.info = data["info"]
        return data.get("state")

    async def download_media(self, message_id: str) -> Optional[Dict[str, Any]]:
        """Media of a message as {data (base64), mimetype, filename}"""
        try:
            data = await self._request(
                "GET", f"/clients/{self.client_id}/messages/{message_id}/media"
            )
        except ChatClientError as e:
            raise MediaDownloadFailed(f"Failed to download media for message {message_id}: {e}") from e
        return data or None

    # =========================================================================
    # EVENTS
    # =========================================================================

    async def _listen(self):
        """Deliver bridge frames to the handler until the socket closes"""
        while self._ws is not None and not self._destroyed:
            try:
                msg = await self._ws.receive()

                if msg.type == aiohttp.WSMsgType.TEXT:
                    notification = ClientNotification.from_bridge(json.loads(msg.data))
                    if notification is None:
                        logger.debug(f"Ignoring unknown bridge frame: {msg.data[:200]}")
                        continue
                    if notification.kind == NotificationKind.READY and notification.arg(0):
                        self.info = notification.arg(0)
                    await self._dispatch(notification)

                elif msg.type in (
                    aiohttp.WSMsgType.CLOSED,
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.ERROR,
                ):
                    logger.warning(f"Bridge event socket closed for client {self.client_id}")
                    break

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in bridge event listener: {e}")
                break

        if not self._destroyed:
            await self._dispatch(
                ClientNotification(NotificationKind.DISCONNECTED, ("BRIDGE_CLOSED",))
            )

    async def _dispatch(self, notification: ClientNotification):
        if self._handler is None:
            return
        try:
            await self._handler(notification)
        except Exception as e:
            logger.error(f"Error handling '{notification.kind.value}' notification: {e}")

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        if self._http_session is None:
            raise ChatClientError("Client handle is not initialized")
        kwargs: Dict[str, Any] = {"json": payload}
        if timeout:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)
        try:
            async with self._http_session.request(
                method, f"{self.http_url}{path}", **kwargs
            ) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                data = data if isinstance(data, dict) else {}

                if resp.status >= 400:
                    raise ChatClientError(
                        data.get("error") or f"Bridge returned status {resp.status}",
                        kind=data.get("kind"),
                    )
                return data
        except aiohttp.ClientConnectionError as e:
            raise ChatClientError(
                f"Cannot connect to WhatsApp bridge at {self.http_url}: {e}",
                kind="bridge_unavailable",
            ) from e

    async def _close_local(self):
        if self._listen_task is not None and self._listen_task is not asyncio.current_task():
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
        self._listen_task = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None


class BridgeClientFactory:
    """Builds bridge-backed client handles with shared connection settings"""

    def __init__(
        self,
        http_url: str = "http://localhost:3100",
        ws_url: str = "ws://localhost:3101",
        options: Optional[ClientOptions] = None,
        request_timeout: float = 30.0,
        initialize_timeout: float = 180.0,
    ):
        self.http_url = http_url
        self.ws_url = ws_url
        self.options = options or ClientOptions()
        self.request_timeout = request_timeout
        self.initialize_timeout = initialize_timeout

    def create(self, session_id: str, auth_root: Path) -> BridgeChatClient:
        return BridgeChatClient(
            client_id=session_id,
            data_path=auth_root,
            options=self.options,
            http_url=self.http_url,
            ws_url=self.ws_url,
            request_timeout=self.request_timeout,
            initialize_timeout=self.initialize_timeout,
        )
