"""
Gateway Configuration Module

Provides centralized configuration management for the session gateway.
"""

from .schema import (
    BridgeConfig,
    GatewayConfig,
    LifecycleConfig,
    ServerConfig,
    StorageConfig,
    WebhookConfig,
    apply_env_overrides,
)
from .loader import load_config, load_config_from_file

__all__ = [
    "GatewayConfig",
    "ServerConfig",
    "StorageConfig",
    "WebhookConfig",
    "LifecycleConfig",
    "BridgeConfig",
    "apply_env_overrides",
    "load_config",
    "load_config_from_file",
]
