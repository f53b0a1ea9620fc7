"""
Gateway Configuration Schema

Defines the configuration structure for the WhatsApp session gateway.
All configuration can be specified via gateway.yaml or environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass
class ServerConfig:
    """HTTP/WebSocket control surface"""
    host: str = "0.0.0.0"
    port: int = 3030
    cors_origins: list = field(default_factory=lambda: ["*"])


@dataclass
class StorageConfig:
    """Where sessions, credentials and webhook settings are kept"""
    data_dir: str = "./data"
    # Older installs kept credentials next to the application
    legacy_dir: str = "."
    sessions_file: str = "sessions.json"
    webhook_file: str = "webhook-config.json"


@dataclass
class WebhookConfig:
    """Initial webhook target, used until webhook-config.json exists"""
    url: str = ""
    token: str = ""
    timeout: float = 5.0


@dataclass
class LifecycleConfig:
    """
    Timing of the session lifecycle, in seconds.

    Defaults are tuned for a real WhatsApp Web client; tests shrink them.
    """
    health_check_interval: float = 10.0
    stuck_threshold: float = 300.0
    loading_timeout: float = 120.0
    init_timeout: float = 180.0
    init_retry_attempts: int = 3
    init_retry_backoff: float = 5.0
    force_cleanup_delay: float = 2.0
    fallback_arm_delay: float = 5.0
    poll_interval: float = 2.0
    fallback_max_attempts: int = 60
    loading_poll_max_attempts: int = 45
    poll_exhausted_grace: float = 3.0
    auth_failure_retry_limit: int = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LifecycleConfig":
        defaults = cls()
        return cls(**{
            name: type(getattr(defaults, name))(data[name])
            for name in defaults.__dataclass_fields__
            if name in data and data[name] is not None
        })

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class BridgeConfig:
    """Connection to the Node.js whatsapp-web.js bridge"""
    http_url: str = "http://localhost:3100"
    ws_url: str = "ws://localhost:3101"
    request_timeout: float = 30.0
    # Options handed to every whatsapp-web.js client (see ClientOptions)
    client: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayConfig:
    """
    Central configuration for the gateway.

    Example gateway.yaml:
    ```yaml
    server:
      port: 3030

    storage:
      data_dir: ./data

    webhook:
      url: "${WEBHOOK_URL:-}"
      token: "${WEBHOOK_TOKEN:-}"

    bridge:
      http_url: http://localhost:3100
      ws_url: ws://localhost:3101
      client:
        headless: true

    lifecycle:
      stuck_threshold: 300
    ```
    """
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)

    # Working directory (relative storage paths resolve against it)
    working_dir: Path = field(default_factory=Path.cwd)

    def resolve(self, path: str) -> Path:
        """Resolve a configured path against the working directory"""
        p = Path(path)
        return p if p.is_absolute() else self.working_dir / p

    @property
    def data_dir(self) -> Path:
        return self.resolve(self.storage.data_dir)

    @property
    def legacy_dir(self) -> Path:
        return self.resolve(self.storage.legacy_dir)

    @property
    def sessions_path(self) -> Path:
        return self.data_dir / self.storage.sessions_file

    @property
    def webhook_path(self) -> Path:
        return self.data_dir / self.storage.webhook_file

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GatewayConfig":
        """Create GatewayConfig from dictionary (e.g., parsed YAML)"""
        server_data = data.get("server") or {}
        server = ServerConfig(
            host=server_data.get("host", "0.0.0.0"),
            port=int(server_data.get("port", 3030)),
            cors_origins=server_data.get("cors_origins") or ["*"],
        )

        storage_data = data.get("storage") or {}
        storage = StorageConfig(
            data_dir=storage_data.get("data_dir", "./data"),
            legacy_dir=storage_data.get("legacy_dir", "."),
            sessions_file=storage_data.get("sessions_file", "sessions.json"),
            webhook_file=storage_data.get("webhook_file", "webhook-config.json"),
        )

        webhook_data = data.get("webhook") or {}
        webhook = WebhookConfig(
            url=webhook_data.get("url") or "",
            token=webhook_data.get("token") or "",
            timeout=float(webhook_data.get("timeout", 5.0)),
        )

        bridge_data = data.get("bridge") or {}
        bridge = BridgeConfig(
            http_url=bridge_data.get("http_url", "http://localhost:3100"),
            ws_url=bridge_data.get("ws_url", "ws://localhost:3101"),
            request_timeout=float(bridge_data.get("request_timeout", 30.0)),
            client=dict(bridge_data.get("client") or {}),
        )

        return cls(
            server=server,
            storage=storage,
            webhook=webhook,
            lifecycle=LifecycleConfig.from_dict(data.get("lifecycle") or {}),
            bridge=bridge,
            working_dir=Path(data.get("working_dir", ".")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (for serialization)"""
        return {
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "cors_origins": list(self.server.cors_origins),
            },
            "storage": {
                "data_dir": self.storage.data_dir,
                "legacy_dir": self.storage.legacy_dir,
                "sessions_file": self.storage.sessions_file,
                "webhook_file": self.storage.webhook_file,
            },
            "webhook": {
                "url": self.webhook.url,
                "token": self.webhook.token,
                "timeout": self.webhook.timeout,
            },
            "lifecycle": self.lifecycle.to_dict(),
            "bridge": {
                "http_url": self.bridge.http_url,
                "ws_url": self.bridge.ws_url,
                "request_timeout": self.bridge.request_timeout,
                "client": dict(self.bridge.client),
            },
            "working_dir": str(self.working_dir),
        }


def apply_env_overrides(config: GatewayConfig, environ: Optional[Dict[str, str]] = None) -> GatewayConfig:
    """Apply PORT / WEBHOOK_URL / WEBHOOK_TOKEN from the environment"""
    env = environ if environ is not None else os.environ

    if env.get("PORT"):
        config.server.port = int(env["PORT"])
    if env.get("WEBHOOK_URL"):
        config.webhook.url = env["WEBHOOK_URL"]
    if env.get("WEBHOOK_TOKEN"):
        config.webhook.token = env["WEBHOOK_TOKEN"]

    return config
