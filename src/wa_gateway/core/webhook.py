"""
Webhook Dispatcher

Posts gateway events to an operator-configured URL. Delivery is
fire-and-forget: it never blocks the lifecycle and failures are only logged.

Settings are persisted in `webhook-config.json` so they survive restarts;
until that file exists the URL/token from gateway.yaml (or WEBHOOK_URL /
WEBHOOK_TOKEN) are used.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set, Union

import httpx

from .events import WebhookEvent

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 5.0


@dataclass
class WebhookSettings:
    """Where (and whether) webhooks are delivered"""
    url: str = ""
    token: str = ""
    enabled: bool = False

    @property
    def target_url(self) -> str:
        return self.url if self.enabled else ""

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "token": self.token, "enabled": self.enabled}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebhookSettings":
        return cls(
            url=data.get("url") or "",
            token=data.get("token") or "",
            enabled=data.get("enabled") is True,
        )


class WebhookSettingsStore:
    """JSON persistence for webhook settings"""

    def __init__(self, path: Union[str, Path], default: Optional[WebhookSettings] = None):
        self.path = Path(path)
        self.default = default or WebhookSettings()

    def load(self) -> WebhookSettings:
        if self.path.exists():
            try:
                return WebhookSettings.from_dict(json.loads(self.path.read_text(encoding="utf-8")))
            except (OSError, ValueError, AttributeError) as e:
                logger.error(f"Error loading webhook config: {e}")
        return WebhookSettings(**self.default.to_dict())

    def save(self, settings: WebhookSettings) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
            return True
        except OSError as e:
            logger.error(f"Error saving webhook config: {e}")
            return False


class WebhookDispatcher:
    """Fire-and-forget HTTP delivery of gateway events"""

    def __init__(
        self,
        settings: Optional[WebhookSettings] = None,
        store: Optional[WebhookSettingsStore] = None,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.settings = settings or (store.load() if store else WebhookSettings())
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._pending: Set[asyncio.Task] = set()

    def configure(self, settings: WebhookSettings) -> bool:
        """Replace the active settings, persisting them when a store is attached"""
        self.settings = settings
        if self.store:
            return self.store.save(settings)
        return True

    def dispatch(self, event: Union[WebhookEvent, str], data: Dict[str, Any]) -> Optional[asyncio.Task]:
        """Schedule delivery in the background and return immediately"""
        if not self.settings.target_url:
            return None
        task = asyncio.ensure_future(self.deliver(event, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def deliver(self, event: Union[WebhookEvent, str], data: Dict[str, Any]) -> bool:
        """Post one event; errors are logged and reported as False"""
        url = self.settings.target_url
        if not url:
            return False
        try:
            await self._post(url, event, data)
            return True
        except Exception as e:
            logger.error(f"Webhook error for '{_event_name(event)}': {e}")
            return False

    async def send_test(self) -> None:
        """Deliver a test event, raising on failure so callers can report it"""
        if not self.settings.url:
            raise ValueError("Webhook URL is not configured")
        await self._post(
            self.settings.url,
            WebhookEvent.TEST,
            {"message": "This is a test webhook from wa-gateway"},
        )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown and in tests)"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(self, url: str, event: Union[WebhookEvent, str], data: Dict[str, Any]) -> None:
        client = self._get_client()
        response = await client.post(
            url,
            json={
                "event": _event_name(event),
                "data": data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            headers={
                "Content-Type": "application/json",
                "X-Webhook-Token": self.settings.token,
            },
        )
        response.raise_for_status()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client


def _event_name(event: Union[WebhookEvent, str]) -> str:
    return event.value if isinstance(event, WebhookEvent) else event
