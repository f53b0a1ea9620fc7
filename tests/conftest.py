"""
Shared test fixtures: an in-memory chat client, a factory that records every
handle it builds, an event recorder and lifecycle timings small enough for
tests to run in milliseconds.
"""

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import pytest

from wa_gateway.channels.whatsapp.client import ClientNotification, NotificationKind
from wa_gateway.config.schema import LifecycleConfig
from wa_gateway.core.auth_store import AuthDataStore
from wa_gateway.core.events import EventBus
from wa_gateway.core.lifecycle import LifecycleController
from wa_gateway.core.registry import SessionRegistry
from wa_gateway.core.webhook import WebhookDispatcher, WebhookSettings

WEBHOOK_URL = "http://hooks.test/whatsapp"

READY_INFO = {"pushname": "Alice", "wid": {"user": "15551234567", "_serialized": "15551234567@c.us"}}


class FakeChatClient:
    """In-memory stand-in for a bridge client handle"""

    def __init__(self, session_id: str, auth_root: Path):
        self.session_id = session_id
        self.auth_root = auth_root
        self.info: Optional[Dict[str, Any]] = None
        self.state: Optional[str] = None
        self.initialize_error: Optional[BaseException] = None
        self.on_initialize: Optional[Callable[["FakeChatClient"], Awaitable[None]]] = None
        self.media: Dict[str, Dict[str, Any]] = {}

        self.initialized = False
        self.destroyed = False
        self.logged_out = False
        self.state_queries = 0
        self._handler = None

    def on_notification(self, handler):
        self._handler = handler

    async def initialize(self):
        if self.initialize_error is not None:
            raise self.initialize_error
        self.initialized = True
        if self.on_initialize is not None:
            await self.on_initialize(self)

    async def destroy(self):
        self.destroyed = True

    async def get_state(self):
        self.state_queries += 1
        return self.state

    async def logout(self):
        self.logged_out = True

    async def download_media(self, message_id: str):
        if message_id not in self.media:
            raise RuntimeError("media unavailable")
        return self.media[message_id]

    async def emit(self, kind: NotificationKind, *args):
        """Deliver a notification the way the bridge listener does"""
        if kind == NotificationKind.READY and args and args[0]:
            self.info = args[0]
        await self._handler(ClientNotification(kind, tuple(args)))


class FakeFactory:
    """Builds FakeChatClients; `configure(client, index)` customizes each one"""

    def __init__(self, configure: Optional[Callable[[FakeChatClient, int], None]] = None):
        self.configure = configure
        self.created: List[FakeChatClient] = []

    def create(self, session_id: str, auth_root: Path) -> FakeChatClient:
        client = FakeChatClient(session_id, auth_root)
        if self.configure is not None:
            self.configure(client, len(self.created))
        self.created.append(client)
        return client

    @property
    def live(self) -> List[FakeChatClient]:
        return [c for c in self.created if not c.destroyed]

    @property
    def latest(self) -> FakeChatClient:
        return self.created[-1]


class EventRecorder:
    """EventBus subscriber that keeps everything it sees"""

    def __init__(self, bus: EventBus):
        self.events: List[tuple] = []
        bus.subscribe(self)

    def __call__(self, name: str, payload: Dict[str, Any]):
        self.events.append((name, payload))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> List[Dict[str, Any]]:
        return [payload for n, payload in self.events if n == name]

    def statuses(self) -> List[str]:
        return [payload["status"] for payload in self.of("status")]


class WebhookSink:
    """httpx transport that records webhook posts"""

    def __init__(self):
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(200, json={"ok": True})

    def events(self) -> List[str]:
        import json
        return [json.loads(r.content)["event"] for r in self.requests]

    def bodies(self, event: str) -> List[Dict[str, Any]]:
        import json
        decoded = [json.loads(r.content) for r in self.requests]
        return [body["data"] for body in decoded if body["event"] == event]


def fast_lifecycle(**overrides) -> LifecycleConfig:
    values = dict(
        health_check_interval=0.01,
        stuck_threshold=30.0,
        loading_timeout=30.0,
        init_timeout=1.0,
        init_retry_attempts=3,
        init_retry_backoff=0.01,
        force_cleanup_delay=0.01,
        fallback_arm_delay=0.01,
        poll_interval=0.01,
        fallback_max_attempts=5,
        loading_poll_max_attempts=3,
        poll_exhausted_grace=0.01,
        auth_failure_retry_limit=1,
    )
    values.update(overrides)
    return LifecycleConfig(**values)


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01):
    """Wait until `predicate()` holds, failing the test after `timeout` seconds"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


class Harness:
    """A controller wired to fakes, plus handles on everything tests inspect"""

    def __init__(
        self,
        root: Path,
        configure: Optional[Callable[[FakeChatClient, int], None]] = None,
        **lifecycle_overrides,
    ):
        self.root = root
        self.registry = SessionRegistry(root / "data" / "sessions.json")
        self.auth_store = AuthDataStore(root / "data", root / "legacy")
        self.factory = FakeFactory(configure)
        self.events = EventBus()
        self.recorder = EventRecorder(self.events)
        self.sink = WebhookSink()
        self.webhook = WebhookDispatcher(
            settings=WebhookSettings(url=WEBHOOK_URL, token="secret", enabled=True),
            transport=httpx.MockTransport(self.sink.handler),
        )
        self.controller = LifecycleController(
            registry=self.registry,
            auth_store=self.auth_store,
            factory=self.factory,
            events=self.events,
            webhook=self.webhook,
            config=fast_lifecycle(**lifecycle_overrides),
        )

    def make_auth_data(self, session_id: str, legacy: bool = False) -> Path:
        path = (
            self.auth_store.legacy_path(session_id) if legacy else self.auth_store.primary_path(session_id)
        )
        path.mkdir(parents=True, exist_ok=True)
        (path / "Default").mkdir(exist_ok=True)
        (path / "Default" / "Cookies").write_text("cookie")
        return path

    async def close(self):
        await self.controller.shutdown()


@pytest.fixture
def harness_factory(tmp_path):
    """Build a Harness rooted in the test's temp directory"""
    def _make(configure=None, **overrides) -> Harness:
        return Harness(tmp_path, configure, **overrides)
    return _make
