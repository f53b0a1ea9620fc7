"""
Gateway HTTP/WebSocket Server

Control surface for the session lifecycle:
- /api/...   - REST endpoints (status, QR, sessions, webhook settings)
- /ws        - WebSocket: state on connect, live events, session actions

JSON bodies keep the camelCase keys existing UI clients and webhook
consumers were written against.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from . import __version__
from .channels.whatsapp.client import BridgeClientFactory, ChatClientFactory
from .channels.whatsapp.config import ClientOptions
from .config.schema import GatewayConfig
from .core.auth_store import AuthDataStore
from .core.errors import (
    ActiveSessionConflict,
    AuthDataClearError,
    ClientNotInitialized,
    InitializationFailed,
    SessionNotFound,
)
from .core.events import EventBus
from .core.lifecycle import LifecycleController
from .core.registry import SessionRegistry
from .core.webhook import WebhookDispatcher, WebhookSettings, WebhookSettingsStore

logger = logging.getLogger(__name__)


def build_controller(
    config: GatewayConfig,
    factory: Optional[ChatClientFactory] = None,
) -> LifecycleController:
    """Wire registry, credential store, webhook and client factory together"""
    registry = SessionRegistry(config.sessions_path)
    auth_store = AuthDataStore(config.data_dir, config.legacy_dir)

    webhook_store = WebhookSettingsStore(
        config.webhook_path,
        default=WebhookSettings(
            url=config.webhook.url,
            token=config.webhook.token,
            enabled=bool(config.webhook.url),
        ),
    )
    webhook = WebhookDispatcher(store=webhook_store, timeout=config.webhook.timeout)

    if factory is None:
        factory = BridgeClientFactory(
            http_url=config.bridge.http_url,
            ws_url=config.bridge.ws_url,
            options=ClientOptions.from_dict(config.bridge.client),
            request_timeout=config.bridge.request_timeout,
            initialize_timeout=config.lifecycle.init_timeout,
        )

    return LifecycleController(
        registry=registry,
        auth_store=auth_store,
        factory=factory,
        events=EventBus(),
        webhook=webhook,
        config=config.lifecycle,
    )


def http_error(error: Exception) -> HTTPException:
    """Map lifecycle errors onto HTTP status codes"""
    if isinstance(error, SessionNotFound):
        return HTTPException(status_code=404, detail="Session not found")
    if isinstance(error, (ActiveSessionConflict, ClientNotInitialized, ValueError)):
        return HTTPException(status_code=400, detail=str(error))
    # InitializationFailed, AuthDataClearError, bridge errors
    return HTTPException(status_code=500, detail=str(error))


class GatewayServer:
    """
    FastAPI application around a LifecycleController.

    Route structure:
    - GET  /api/health                  - Liveness
    - GET  /api/status                  - Client state
    - GET  /api/qr                      - Pending QR challenge
    - GET  /api/sessions                - List sessions
    - POST /api/sessions                - Create session
    - POST /api/sessions/switch/{id}    - Switch in the background
    - POST /api/sessions/{id}/select    - Select and wait for initialization
    - POST /api/sessions/{id}/clear     - Clear credentials
    - POST /api/sessions/{id}/force-clear
    - GET  /api/sessions/health         - Health monitor snapshot
    - DELETE /api/sessions/{id}
    - POST /api/logout
    - GET|POST /api/webhook-config, POST /api/webhook-test
    - WS   /ws
    """

    def __init__(
        self,
        controller: LifecycleController,
        host: str = "0.0.0.0",
        port: int = 3030,
        cors_origins: Optional[list] = None,
    ):
        self.controller = controller
        self.host = host
        self.port = port
        self.started_at = time.monotonic()
        self.websockets: set = set()

        self.app = FastAPI(
            title="WhatsApp Session Gateway",
            description="Multi-session WhatsApp Web gateway",
            version=__version__,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

    def _setup_routes(self):
        controller = self.controller

        # =====================================================================
        # STATUS
        # =====================================================================

        @self.app.get("/api/health")
        async def health():
            return {
                "status": "ok",
                "uptime": time.monotonic() - self.started_at,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        @self.app.get("/api/status")
        async def status():
            snapshot = controller.snapshot()
            client_info = snapshot["client_info"]
            return {
                "state": snapshot["state"],
                "authenticated": snapshot["authenticated"],
                "ready": snapshot["ready"],
                "qr": snapshot["qr"],
                "clientInfo": client_info,
                "pushname": client_info["pushname"] if client_info else None,
                "currentSession": snapshot["current_session"],
            }

        @self.app.get("/api/qr")
        async def qr():
            if not controller.status.qr:
                raise HTTPException(status_code=404, detail="No QR code available")
            return {"qr": controller.status.qr}

        # =====================================================================
        # SESSIONS
        # =====================================================================

        @self.app.get("/api/sessions")
        async def list_sessions():
            return {
                "sessions": controller.registry.to_list(),
                "currentSession": controller.current_session,
            }

        @self.app.post("/api/sessions")
        async def create_session(request: Request):
            body = await _json_body(request)
            try:
                session = await controller.create_session(body.get("name") or "")
            except ValueError as e:
                raise http_error(e)
            return {"success": True, "session": session.to_dict()}

        @self.app.get("/api/sessions/health")
        async def sessions_health():
            return _health_to_wire(controller.health_snapshot())

        @self.app.post("/api/sessions/switch/{session_id}")
        async def switch_session(session_id: str):
            try:
                controller.switch_session(session_id)
            except SessionNotFound as e:
                raise http_error(e)
            return {"success": True, "message": "Switching to session", "sessionId": session_id}

        @self.app.post("/api/sessions/{session_id}/select")
        async def select_session(session_id: str):
            try:
                await controller.select_session(session_id)
            except (SessionNotFound, InitializationFailed) as e:
                raise http_error(e)
            return {"success": True, "message": "Session selected", "sessionId": session_id}

        @self.app.post("/api/sessions/{session_id}/clear")
        async def clear_session(session_id: str, request: Request):
            body = await _json_body(request)
            try:
                await controller.clear_session(
                    session_id, force_disconnect=body.get("forceDisconnect", True) is not False
                )
            except (SessionNotFound, ActiveSessionConflict, AuthDataClearError) as e:
                raise http_error(e)
            return {"success": True, "message": "Session auth data cleared successfully"}

        @self.app.post("/api/sessions/{session_id}/force-clear")
        async def force_clear_session(session_id: str):
            try:
                await controller.force_clear(session_id)
            except (SessionNotFound, AuthDataClearError) as e:
                raise http_error(e)
            return {"success": True, "message": "Session force-cleared successfully. Please reconnect."}

        @self.app.delete("/api/sessions/{session_id}")
        async def delete_session(session_id: str):
            try:
                await controller.delete_session(session_id)
            except (SessionNotFound, ActiveSessionConflict, AuthDataClearError) as e:
                raise http_error(e)
            return {"success": True, "message": "Session deleted successfully"}

        @self.app.post("/api/logout")
        async def logout():
            try:
                await controller.logout()
            except Exception as e:
                logger.exception(f"Logout failed: {e}")
                raise http_error(e)
            return {"success": True, "message": "Logged out successfully"}

        # =====================================================================
        # WEBHOOK SETTINGS
        # =====================================================================

        @self.app.get("/api/webhook-config")
        async def get_webhook_config():
            return controller.webhook.settings.to_dict()

        @self.app.post("/api/webhook-config")
        async def save_webhook_config(request: Request):
            settings = WebhookSettings.from_dict(await _json_body(request))
            if not controller.webhook.configure(settings):
                raise HTTPException(status_code=500, detail="Failed to save webhook configuration")
            return {"success": True, "message": "Webhook configuration saved"}

        @self.app.post("/api/webhook-test")
        async def test_webhook():
            try:
                await controller.webhook.send_test()
            except ValueError as e:
                raise http_error(e)
            except Exception as e:
                raise HTTPException(status_code=500, detail=f"Webhook test failed: {e}")
            return {"success": True, "message": "Test webhook sent successfully"}

        # =====================================================================
        # WEBSOCKET
        # =====================================================================

        @self.app.websocket("/ws")
        async def websocket_events(websocket: WebSocket):
            """Live events plus session actions"""
            await websocket.accept()
            self.websockets.add(websocket)

            async def forward(event: str, data: Dict[str, Any]):
                await websocket.send_json({"event": event, "data": data})

            unsubscribe = controller.events.subscribe(forward)

            try:
                snapshot = controller.snapshot()
                await websocket.send_json({"event": "state", "data": {
                    "state": snapshot["state"],
                    "authenticated": snapshot["authenticated"],
                    "ready": snapshot["ready"],
                    "qr": snapshot["qr"],
                    "sessions": snapshot["sessions"],
                    "currentSession": snapshot["current_session"],
                }})

                while True:
                    frame = await websocket.receive_json()
                    if isinstance(frame, dict):
                        await self._handle_ws_action(websocket, frame)

            except WebSocketDisconnect:
                logger.info("Event WebSocket disconnected")
            except Exception as e:
                logger.exception(f"Event WebSocket error: {e}")
            finally:
                unsubscribe()
                self.websockets.discard(websocket)

    async def _handle_ws_action(self, websocket: WebSocket, frame: Dict[str, Any]):
        controller = self.controller
        action = frame.get("action")
        session_id = frame.get("sessionId")

        try:
            if action == "selectSession":
                try:
                    controller.switch_session(session_id)
                except SessionNotFound:
                    await websocket.send_json({
                        "event": "session-init-failed",
                        "data": {"message": "Session not found"},
                    })
                    return
                await websocket.send_json({"event": "sessionSelected", "data": {"sessionId": session_id}})

            elif action == "clearSession":
                await controller.clear_session(session_id)
                await websocket.send_json({"event": "sessionCleared", "data": {
                    "sessionId": session_id,
                    "message": "Session cleared successfully",
                }})

            elif action == "createSession":
                session = await controller.create_session(frame.get("name") or "")
                await websocket.send_json({"event": "sessionCreated", "data": {"session": session.to_dict()}})

            else:
                await websocket.send_json({"event": "error", "data": {"message": f"Unknown action: {action}"}})

        except (SessionNotFound, ActiveSessionConflict, AuthDataClearError, ValueError) as e:
            await websocket.send_json({"event": "error", "data": {"message": str(e)}})

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    async def start(self):
        """Serve until uvicorn exits, then shut the lifecycle down"""
        logger.info(f"Gateway server started on http://{self.host}:{self.port}")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info"
        )
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            await self.stop()

    async def stop(self):
        for ws in list(self.websockets):
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")
        self.websockets.clear()

        await self.controller.shutdown()
        logger.info("Gateway server stopped")


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _health_to_wire(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    thresholds = snapshot["thresholds"]
    return {
        "currentSession": snapshot["current_session"],
        "clientState": snapshot["client_state"],
        "isAuthenticated": snapshot["is_authenticated"],
        "isClientReady": snapshot["is_client_ready"],
        "isReinitializing": snapshot["is_reinitializing"],
        "sessionInitStartTime": snapshot["session_init_start_time"],
        "elapsedMs": snapshot["elapsed_ms"],
        "healthCheckActive": snapshot["health_check_active"],
        "thresholds": {
            "initTimeoutMs": thresholds["init_timeout_ms"],
            "loadingTimeoutMs": thresholds["loading_timeout_ms"],
            "stuckThresholdMs": thresholds["stuck_threshold_ms"],
        },
    }
