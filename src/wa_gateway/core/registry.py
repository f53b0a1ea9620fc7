"""
Session Registry

Durable list of named WhatsApp sessions. Each session is an independent set of
credentials the gateway can connect to; at most one is active at a time.

The registry is written through on every mutation. Its single writer is the
lifecycle controller, so no locking happens here.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from .errors import SessionNotFound

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"
DEFAULT_SESSION_NAME = "Default Session"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Session:
    """A named, independently authenticated WhatsApp identity"""
    id: str
    name: str
    created_at: str
    active: bool = False
    last_used: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the on-disk (camelCase) keys"""
        data = {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
            "active": self.active,
        }
        if self.last_used:
            data["lastUsed"] = self.last_used
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or str(data["id"]),
            created_at=data.get("createdAt") or data.get("created_at") or _now_iso(),
            active=bool(data.get("active", False)),
            last_used=data.get("lastUsed") or data.get("last_used"),
        )


class SessionRegistry:
    """JSON-file backed list of sessions, in display order"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._sessions: List[Session] = []
        self.load()

    def load(self) -> None:
        """Load sessions from disk, seeding a default session if there are none"""
        self._sessions = []

        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                if not isinstance(raw, list):
                    raise ValueError("sessions file must contain a list")
                self._sessions = [Session.from_dict(item) for item in raw]
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.error(f"Error loading sessions from {self.path}: {e}")
                self._sessions = []

        if not self._sessions:
            logger.info("No sessions found, creating default session")
            self._sessions.append(
                Session(id=DEFAULT_SESSION_ID, name=DEFAULT_SESSION_NAME, created_at=_now_iso())
            )
            self.save()

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps([s.to_dict() for s in self._sessions], indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            logger.error(f"Error saving sessions to {self.path}: {e}")

    def list(self) -> List[Session]:
        return list(self._sessions)

    def find(self, session_id: str) -> Optional[Session]:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def get(self, session_id: str) -> Session:
        session = self.find(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def create(self, name: str) -> Session:
        """Create an inactive session with a fresh id"""
        name = (name or "").strip()
        if not name:
            raise ValueError("Session name is required")

        session_id = f"session-{uuid4().hex[:12]}"
        while self.find(session_id) is not None:
            session_id = f"session-{uuid4().hex[:12]}"

        session = Session(id=session_id, name=name, created_at=_now_iso())
        self._sessions.append(session)
        self.save()
        logger.info(f"Created session {session.id} ({session.name})")
        return session

    def delete(self, session_id: str) -> Session:
        session = self.get(session_id)
        self._sessions.remove(session)
        self.save()
        logger.info(f"Deleted session {session_id}")
        return session

    def mark_active(self, session_id: str) -> Session:
        """Flag one session active, clearing the flag on every other session"""
        session = self.get(session_id)
        for other in self._sessions:
            other.active = False
        session.active = True
        session.last_used = _now_iso()
        self.save()
        return session

    def mark_inactive(self, session_id: str) -> Session:
        session = self.get(session_id)
        session.active = False
        self.save()
        return session

    def to_list(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self._sessions]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return self.find(session_id) is not None
