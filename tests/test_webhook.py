"""
Tests for webhook delivery and persisted webhook settings
"""

import json

import httpx
import pytest

from wa_gateway.core.events import WebhookEvent
from wa_gateway.core.webhook import WebhookDispatcher, WebhookSettings, WebhookSettingsStore


class TestWebhookSettingsStore:
    """Test webhook-config.json persistence"""

    def test_defaults_until_saved(self, tmp_path):
        store = WebhookSettingsStore(
            tmp_path / "webhook-config.json",
            default=WebhookSettings(url="http://example.test/hook", token="t", enabled=True),
        )

        settings = store.load()
        assert settings.url == "http://example.test/hook"
        assert settings.enabled is True

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "data" / "webhook-config.json"
        store = WebhookSettingsStore(path)

        assert store.save(WebhookSettings(url="http://example.test/hook", token="abc", enabled=True))

        assert json.loads(path.read_text()) == {
            "url": "http://example.test/hook",
            "token": "abc",
            "enabled": True,
        }
        assert store.load() == WebhookSettings(url="http://example.test/hook", token="abc", enabled=True)

    def test_enabled_must_be_true(self):
        assert WebhookSettings.from_dict({"url": "http://x", "enabled": "yes"}).enabled is False

    def test_disabled_has_no_target(self):
        assert WebhookSettings(url="http://x", enabled=False).target_url == ""
        assert WebhookSettings(url="http://x", enabled=True).target_url == "http://x"


class TestWebhookDispatcher:
    """Test HTTP delivery"""

    def setup_method(self):
        self.requests = []

    def _handler(self, request):
        self.requests.append(request)
        return httpx.Response(200)

    def _dispatcher(self, handler=None, **settings):
        values = {"url": "http://example.test/hook", "token": "secret", "enabled": True}
        values.update(settings)
        return WebhookDispatcher(
            settings=WebhookSettings(**values),
            transport=httpx.MockTransport(handler or self._handler),
        )

    @pytest.mark.asyncio
    async def test_deliver_posts_envelope(self):
        dispatcher = self._dispatcher()
        try:
            assert await dispatcher.deliver(WebhookEvent.READY, {"pushname": "Alice"}) is True
        finally:
            await dispatcher.close()

        request = self.requests[0]
        body = json.loads(request.content)
        assert request.method == "POST"
        assert str(request.url) == "http://example.test/hook"
        assert request.headers["X-Webhook-Token"] == "secret"
        assert request.headers["Content-Type"] == "application/json"
        assert body["event"] == "ready"
        assert body["data"] == {"pushname": "Alice"}
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_dispatch_skipped_when_disabled(self):
        dispatcher = self._dispatcher(enabled=False)
        try:
            assert dispatcher.dispatch(WebhookEvent.READY, {}) is None
            assert await dispatcher.deliver(WebhookEvent.READY, {}) is False
        finally:
            await dispatcher.close()
        assert self.requests == []

    @pytest.mark.asyncio
    async def test_dispatch_runs_in_background(self):
        dispatcher = self._dispatcher()
        try:
            task = dispatcher.dispatch(WebhookEvent.AUTHENTICATED, {})
            assert task is not None
            await dispatcher.drain()
        finally:
            await dispatcher.close()
        assert len(self.requests) == 1

    @pytest.mark.asyncio
    async def test_delivery_errors_are_swallowed(self):
        def failing(request):
            return httpx.Response(500)

        dispatcher = self._dispatcher(handler=failing)
        try:
            assert await dispatcher.deliver(WebhookEvent.READY, {}) is False
        finally:
            await dispatcher.close()

    @pytest.mark.asyncio
    async def test_send_test_raises_on_failure(self):
        def failing(request):
            return httpx.Response(502)

        dispatcher = self._dispatcher(handler=failing)
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await dispatcher.send_test()
        finally:
            await dispatcher.close()

    @pytest.mark.asyncio
    async def test_send_test_without_url(self):
        dispatcher = self._dispatcher(url="")
        with pytest.raises(ValueError):
            await dispatcher.send_test()

    @pytest.mark.asyncio
    async def test_send_test_ignores_enabled_flag(self):
        dispatcher = self._dispatcher(enabled=False)
        try:
            await dispatcher.send_test()
        finally:
            await dispatcher.close()

        body = json.loads(self.requests[0].content)
        assert body["event"] == "test"
        assert body["data"] == {"message": "This is a test webhook from wa-gateway"}

    def test_configure_persists(self, tmp_path):
        store = WebhookSettingsStore(tmp_path / "webhook-config.json")
        dispatcher = WebhookDispatcher(store=store)
        assert dispatcher.settings.target_url == ""

        assert dispatcher.configure(WebhookSettings(url="http://example.test/new", enabled=True))

        assert dispatcher.settings.target_url == "http://example.test/new"
        assert WebhookDispatcher(store=store).settings.url == "http://example.test/new"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
