"""
Client State

The process-wide view of the underlying client: a state value plus the
`authenticated` / `ready` flags observers have always relied on, the pending
QR challenge and the logged-in identity.

Transitions go through methods so that `ready => authenticated` and
"ready excludes a pending QR" always hold.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


UNKNOWN_IDENTITY = "Unknown"


class ClientStateValue(str, Enum):
    """Lifecycle states of the underlying chat client"""
    DISCONNECTED = "disconnected"
    QR = "qr"
    AUTHENTICATED = "authenticated"
    LOADING = "loading"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    ERROR = "error"


@dataclass
class Identity:
    """Logged-in WhatsApp account"""
    pushname: str = UNKNOWN_IDENTITY
    number: str = UNKNOWN_IDENTITY

    @classmethod
    def from_info(cls, info: Optional[Dict[str, Any]]) -> Optional["Identity"]:
        """
        Build from whatsapp-web.js client info.

        Returns None while the info (or its `wid`) is not populated yet.
        """
        if not info:
            return None
        wid = info.get("wid")
        if not wid:
            return None
        number = wid.get("user") if isinstance(wid, dict) else str(wid)
        return cls(
            pushname=info.get("pushname") or UNKNOWN_IDENTITY,
            number=number or UNKNOWN_IDENTITY,
        )

    @classmethod
    def placeholder(cls) -> "Identity":
        return cls()

    def to_dict(self) -> Dict[str, str]:
        return {"pushname": self.pushname, "number": self.number}


@dataclass
class ClientStatus:
    """Mutable client state owned by the lifecycle controller"""
    state: ClientStateValue = ClientStateValue.DISCONNECTED
    authenticated: bool = False
    ready: bool = False
    qr: Optional[str] = None
    identity: Optional[Identity] = None

    def reset(self) -> None:
        """Back to disconnected, forgetting everything about the last handle"""
        self.state = ClientStateValue.DISCONNECTED
        self.authenticated = False
        self.ready = False
        self.qr = None
        self.identity = None

    def mark_qr(self, qr_data: str) -> None:
        self.state = ClientStateValue.QR
        self.qr = qr_data
        self.ready = False

    def mark_authenticated(self) -> None:
        self.state = ClientStateValue.AUTHENTICATED
        self.authenticated = True

    def mark_loading(self) -> None:
        self.state = ClientStateValue.LOADING

    def mark_ready(self, identity: Identity) -> None:
        self.state = ClientStateValue.READY
        self.ready = True
        self.authenticated = True
        self.qr = None
        self.identity = identity

    def mark_auth_failure(self) -> None:
        self.state = ClientStateValue.AUTH_FAILURE
        self.ready = False

    def mark_error(self) -> None:
        self.state = ClientStateValue.ERROR
        self.ready = False

    @property
    def is_loading(self) -> bool:
        return self.state == ClientStateValue.LOADING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "authenticated": self.authenticated,
            "ready": self.ready,
            "qr": self.qr,
            "client_info": self.identity.to_dict() if self.identity and self.ready else None,
        }
