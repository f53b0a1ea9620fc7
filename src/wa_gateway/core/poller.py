"""
Fallback Readiness Poller

whatsapp-web.js does not reliably emit `ready`: cached sessions often skip
the loading screen, and sometimes the event never arrives at all even though
the client is connected. The poller asks the client for its connection state
and synthesizes readiness once it reports CONNECTED with account info.

Two triggers share a single poll:
    - a few seconds after `authenticated`, if still not ready (gives up quietly)
    - the loading screen reaching 100% (escalates to a forced cleanup when the
      budget runs out)
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..config.schema import LifecycleConfig
from .state import ClientStatus, Identity
from .timers import TimerSet

logger = logging.getLogger(__name__)

ARM_TIMER = "fallback-arm"
POLL_TIMER = "fallback-poll"

CONNECTED = "CONNECTED"


class FallbackReadinessPoller:
    """Single-instance connection-state poll for a given handle generation"""

    def __init__(
        self,
        timers: TimerSet,
        status: ClientStatus,
        config: LifecycleConfig,
        current_generation: Callable[[], int],
        get_client: Callable[[], Optional[Any]],
        on_ready: Callable[[int, Dict[str, Any]], Awaitable[None]],
        on_exhausted: Callable[[int], Awaitable[None]],
    ):
        self.timers = timers
        self.status = status
        self.config = config
        self._current_generation = current_generation
        self._get_client = get_client
        self._on_ready = on_ready
        self._on_exhausted = on_exhausted

        self.active = False
        self.escalate = False
        self.attempts = 0
        self.max_attempts = 0
        self.generation: Optional[int] = None

    def arm(self, generation: int) -> None:
        """Schedule a non-escalating poll shortly after authentication"""
        def _fire():
            if self.status.ready or generation != self._current_generation() or self._get_client() is None:
                return
            logger.info("Starting fallback polling after authentication...")
            self.start(generation, escalate=False)

        self.timers.call_later(ARM_TIMER, self.config.fallback_arm_delay, _fire)

    def loading_complete(self, generation: int) -> None:
        """Loading screen hit 100%: poll, escalating if the budget runs out"""
        if self.status.ready:
            return
        logger.info("Loading complete, starting client state polling...")
        self.start(generation, escalate=True)

    def start(self, generation: int, escalate: bool) -> None:
        if self.active and self.generation == generation:
            if escalate and not self.escalate:
                # Loading finished during an authentication-triggered run
                logger.info("Fallback poll upgraded after loading complete")
                self.escalate = True
                self.attempts = 0
                self.max_attempts = self.config.loading_poll_max_attempts
            return

        self.reset()
        self.active = True
        self.generation = generation
        self.escalate = escalate
        self.attempts = 0
        self.max_attempts = (
            self.config.loading_poll_max_attempts if escalate else self.config.fallback_max_attempts
        )
        self.timers.call_every(POLL_TIMER, self.config.poll_interval, self._tick)

    def reset(self) -> None:
        """Stop polling and forget any pending arm"""
        self.timers.cancel(ARM_TIMER)
        self.timers.cancel(POLL_TIMER)
        self.active = False
        self.escalate = False
        self.attempts = 0
        self.generation = None

    def _is_current(self, generation: Optional[int]) -> bool:
        return generation == self._current_generation() and self._get_client() is not None

    async def _tick(self) -> Optional[bool]:
        generation = self.generation
        if not self.active:
            return False

        if self.status.ready:
            logger.info("Client became ready, stopping poll")
            self.reset()
            return False

        if not self._is_current(generation):
            logger.info("WhatsApp client was destroyed, stopping poll")
            self.reset()
            return False

        self.attempts += 1
        logger.info(f"Polling for client state (attempt {self.attempts}/{self.max_attempts})...")

        client = self._get_client()
        try:
            state = await client.get_state()
            logger.debug(f"Client state: {state}")

            if not self._is_current(generation) or not self.active:
                return False

            if state == CONNECTED:
                info = client.info
                if Identity.from_info(info) is not None:
                    logger.info("Client info available via polling - triggering ready manually")
                    self.reset()
                    await self._on_ready(generation, info)
                    return False
                logger.info("State is CONNECTED but info not yet available, will retry...")
        except Exception as e:
            logger.warning(f"Client state check failed: {e}")

        if self.attempts >= self.max_attempts:
            escalate = self.escalate
            self.reset()
            if escalate and not self.status.ready and self._is_current(generation):
                logger.warning("Max poll attempts reached after loading complete - triggering session cleanup")
                await self._on_exhausted(generation)
            else:
                logger.info("Fallback polling max attempts reached")
            return False

        return None
