"""
Health Monitor

Supervises one initialization attempt at a time. A client that never becomes
ready, or that sits on the loading screen long after authenticating, is
handed back to the lifecycle controller for a forced cleanup.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..config.schema import LifecycleConfig
from .state import ClientStatus
from .timers import TimerSet

logger = logging.getLogger(__name__)

HEALTH_TIMER = "health"

LOADING_TIMEOUT_REASON = "Loading took too long after authentication"

# (session_id, reason)
StuckCallback = Callable[[str, str], None]


def stuck_reason(threshold: float) -> str:
    """Human-readable reason for the absolute stuck threshold"""
    if threshold >= 60:
        return f"Session stuck for too long ({int(threshold // 60)}+ minutes)"
    return f"Session stuck for too long ({int(threshold)}+ seconds)"


class HealthMonitor:
    """Periodic check of the attempt currently being initialized"""

    def __init__(
        self,
        timers: TimerSet,
        status: ClientStatus,
        config: LifecycleConfig,
        on_stuck: StuckCallback,
    ):
        self.timers = timers
        self.status = status
        self.config = config
        self.on_stuck = on_stuck

        self.session_id: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self._started_monotonic: Optional[float] = None

    @property
    def active(self) -> bool:
        return self.timers.is_active(HEALTH_TIMER)

    @property
    def elapsed(self) -> Optional[float]:
        if self._started_monotonic is None:
            return None
        return time.monotonic() - self._started_monotonic

    def start(self, session_id: str) -> None:
        """Begin timing a new attempt, replacing any previous one"""
        self.stop()
        self.session_id = session_id
        self.started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()

        logger.info(f"Starting session health check for: {session_id}")
        self.timers.call_every(HEALTH_TIMER, self.config.health_check_interval, self._check)

    def stop(self) -> None:
        self.timers.cancel(HEALTH_TIMER)
        self.session_id = None
        self.started_at = None
        self._started_monotonic = None

    def _check(self) -> Optional[bool]:
        elapsed = self.elapsed
        if elapsed is None:
            return False

        if self.status.ready:
            logger.info("Session is ready, stopping health check")
            self.stop()
            return False

        session_id = self.session_id

        if elapsed > self.config.stuck_threshold:
            logger.warning(f"Session {session_id} stuck for {elapsed:.0f}s - forcing cleanup")
            self.stop()
            self.on_stuck(session_id, stuck_reason(self.config.stuck_threshold))
            return False

        if self.status.authenticated and self.status.is_loading and elapsed > self.config.loading_timeout:
            logger.warning(f"Session {session_id} stuck in loading state - forcing cleanup")
            self.stop()
            self.on_stuck(session_id, LOADING_TIMEOUT_REASON)
            return False

        logger.debug(f"Session {session_id} not ready after {elapsed:.0f}s")
        return None

    def snapshot(self) -> Dict[str, Any]:
        elapsed = self.elapsed
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "elapsed_ms": int(elapsed * 1000) if elapsed is not None else None,
            "active": self.active,
            "thresholds": {
                "init_timeout_ms": int(self.config.init_timeout * 1000),
                "loading_timeout_ms": int(self.config.loading_timeout * 1000),
                "stuck_threshold_ms": int(self.config.stuck_threshold * 1000),
            },
        }
