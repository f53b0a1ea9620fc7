"""
Gateway Errors

Error taxonomy for the session lifecycle. Only initialization failures that
exhaust their retries (and are not recoverable) propagate to callers; the
rest are handled inside the lifecycle and announced to subscribers.
"""

import asyncio
from typing import Optional


# Substrings of underlying error text that mark an init failure as recoverable
RECOVERABLE_ERROR_MARKERS = ("timeout", "Target closed", "Session")

# Structured error kinds reported by the bridge that mean the same thing
RECOVERABLE_ERROR_KINDS = frozenset({"timeout", "target_closed", "session"})


class GatewayError(Exception):
    """Base class for all gateway errors"""


class SessionNotFound(GatewayError):
    """No session with the given id exists in the registry"""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class ActiveSessionConflict(GatewayError):
    """Operation is not allowed on the currently active session"""

    def __init__(self, session_id: str, message: Optional[str] = None):
        super().__init__(
            message
            or f"Cannot modify active session {session_id}. Switch to another session first."
        )
        self.session_id = session_id


class InitializationFailed(GatewayError):
    """Client initialization failed after the retry budget was exhausted"""

    def __init__(self, session_id: str, attempts: int, cause: Optional[BaseException] = None):
        detail = str(cause) if cause else "unknown error"
        super().__init__(f"Failed to initialize session {session_id} after {attempts} attempt(s): {detail}")
        self.session_id = session_id
        self.attempts = attempts
        self.cause = cause


class RecoverableInitError(GatewayError):
    """Init failure that is handled by wiping credentials instead of propagating"""


class AuthenticationFailed(GatewayError):
    """The underlying client rejected the stored credentials"""


class StuckSession(GatewayError):
    """An initialization attempt stalled past its health thresholds"""

    def __init__(self, session_id: str, reason: str):
        super().__init__(f"Session {session_id} stuck: {reason}")
        self.session_id = session_id
        self.reason = reason


class MediaDownloadFailed(GatewayError):
    """Media payload of a message could not be retrieved"""


class AuthDataClearError(GatewayError):
    """Neither the primary nor the legacy auth location could be removed"""


class ClientNotInitialized(GatewayError):
    """A command needs a live client handle but none exists"""


class ChatClientError(GatewayError):
    """Failure reported by the underlying chat client"""

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.kind = kind


def is_recoverable_init_error(error: BaseException) -> bool:
    """
    Decide whether an initialization failure should wipe credentials and be
    reported instead of propagated.

    Structured kinds win over message text when the client provides them.
    """
    if isinstance(error, InitializationFailed) and error.cause is not None:
        return is_recoverable_init_error(error.cause)

    if isinstance(error, RecoverableInitError):
        return True

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return True

    kind = getattr(error, "kind", None)
    if kind:
        return kind in RECOVERABLE_ERROR_KINDS

    message = str(error)
    return any(marker in message for marker in RECOVERABLE_ERROR_MARKERS)
