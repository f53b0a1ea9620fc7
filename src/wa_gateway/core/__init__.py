"""
Gateway Core

Session registry, credential store, client state, timers, supervision and
event delivery. The lifecycle controller itself lives in
`wa_gateway.core.lifecycle`.
"""

from .errors import (
    GatewayError,
    SessionNotFound,
    ActiveSessionConflict,
    InitializationFailed,
    RecoverableInitError,
    AuthenticationFailed,
    StuckSession,
    MediaDownloadFailed,
    AuthDataClearError,
    ClientNotInitialized,
    ChatClientError,
    is_recoverable_init_error,
)
from .state import ClientStateValue, ClientStatus, Identity
from .registry import Session, SessionRegistry
from .auth_store import AuthDataStore
from .events import EventBus, GatewayEvent, WebhookEvent
from .timers import TimerSet
from .webhook import WebhookDispatcher, WebhookSettings, WebhookSettingsStore
from .health import HealthMonitor
from .poller import FallbackReadinessPoller

__all__ = [
    # Errors
    "GatewayError",
    "SessionNotFound",
    "ActiveSessionConflict",
    "InitializationFailed",
    "RecoverableInitError",
    "AuthenticationFailed",
    "StuckSession",
    "MediaDownloadFailed",
    "AuthDataClearError",
    "ClientNotInitialized",
    "ChatClientError",
    "is_recoverable_init_error",
    # State
    "ClientStateValue",
    "ClientStatus",
    "Identity",
    # Sessions
    "Session",
    "SessionRegistry",
    "AuthDataStore",
    # Events
    "EventBus",
    "GatewayEvent",
    "WebhookEvent",
    "WebhookDispatcher",
    "WebhookSettings",
    "WebhookSettingsStore",
    # Supervision
    "TimerSet",
    "HealthMonitor",
    "FallbackReadinessPoller",
]
