"""
Client Lifecycle Controller

Owns the single live client handle and drives it through selection,
initialization (with bounded retry), authentication failures, disconnects
and forced recovery.

Concurrency model:
    - Every lifecycle operation runs under one asyncio.Lock, so teardown and
      start-up of different sessions never interleave.
    - Each handle gets a generation number. Notifications, poll ticks and
      deferred recovery requests carry the generation they were created for
      and are dropped once a newer handle exists.
    - Recovery triggered from inside a notification or timer (auth-failure
      reinit, forced cleanup) runs as its own background task, so it can wait
      for the lock without blocking the notification stream.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Dict, Optional, Set

from ..channels.whatsapp.client import ChatClient, ChatClientFactory
from ..config.schema import LifecycleConfig
from .auth_store import AuthDataStore
from .errors import (
    ActiveSessionConflict,
    AuthDataClearError,
    ClientNotInitialized,
    GatewayError,
    InitializationFailed,
    StuckSession,
    is_recoverable_init_error,
)
from .events import EventBus, GatewayEvent, WebhookEvent
from .fanout import EventFanout
from .health import HealthMonitor
from .poller import FallbackReadinessPoller
from .registry import Session, SessionRegistry
from .state import ClientStatus
from .timers import TimerSet
from .webhook import WebhookDispatcher

logger = logging.getLogger(__name__)

POLL_GRACE_TIMER = "poll-grace"

# Disconnect reasons after which the stored credentials are useless
AUTH_CLEARING_DISCONNECT_REASONS = frozenset({"NAVIGATION", "LOGOUT", "CONFLICT"})

POLL_EXHAUSTED_REASON = "Client info polling exhausted after loading complete"
MANUAL_FORCE_CLEAR_REASON = "Manual force clear"


class LifecycleController:
    """Session lifecycle state machine around a single client handle"""

    def __init__(
        self,
        registry: SessionRegistry,
        auth_store: AuthDataStore,
        factory: ChatClientFactory,
        events: Optional[EventBus] = None,
        webhook: Optional[WebhookDispatcher] = None,
        config: Optional[LifecycleConfig] = None,
    ):
        self.registry = registry
        self.auth_store = auth_store
        self.factory = factory
        self.events = events or EventBus()
        self.webhook = webhook or WebhookDispatcher()
        self.config = config or LifecycleConfig()

        self.status = ClientStatus()
        self.timers = TimerSet()
        self.client: Optional[ChatClient] = None
        self.generation = 0
        self.current_session: Optional[str] = None
        self.is_reinitializing = False
        self.auth_failures: Dict[str, int] = {}

        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._switch_task: Optional[asyncio.Task] = None
        self._switch_target: Optional[str] = None

        self.fanout = EventFanout(self)
        self.health = HealthMonitor(self.timers, self.status, self.config, self._on_stuck)
        self.poller = FallbackReadinessPoller(
            self.timers,
            self.status,
            self.config,
            current_generation=lambda: self.generation,
            get_client=lambda: self.client,
            on_ready=self.fanout.finalize_ready,
            on_exhausted=self._on_poll_exhausted,
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def owns(self, client: ChatClient, generation: int) -> bool:
        """True while `client` is the live handle of `generation`"""
        return self.client is client and self.generation == generation

    def snapshot(self) -> Dict[str, Any]:
        return {
            **self.status.to_dict(),
            "sessions": self.registry.to_list(),
            "current_session": self.current_session,
        }

    def health_snapshot(self) -> Dict[str, Any]:
        health = self.health.snapshot()
        return {
            "current_session": self.current_session,
            "client_state": self.status.state.value,
            "is_authenticated": self.status.authenticated,
            "is_client_ready": self.status.ready,
            "is_reinitializing": self.is_reinitializing,
            "session_init_start_time": health["started_at"],
            "elapsed_ms": health["elapsed_ms"],
            "health_check_active": health["active"],
            "thresholds": health["thresholds"],
        }

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def select_session(self, session_id: str) -> None:
        """
        Tear down whatever is running and start `session_id`.

        Recoverable initialization failures wipe the session's credentials and
        are reported to subscribers; anything else raises InitializationFailed.
        """
        async with self._lock:
            await self._select_locked(session_id)

    def switch_session(self, session_id: str) -> asyncio.Task:
        """Validate now, select in the background; repeated calls share the task"""
        self.registry.get(session_id)

        if (
            self._switch_task is not None
            and not self._switch_task.done()
            and self._switch_target == session_id
        ):
            return self._switch_task

        self._switch_target = session_id
        self._switch_task = self.spawn(self._run_switch(session_id))
        return self._switch_task

    async def clear_session(self, session_id: str, force_disconnect: bool = True) -> None:
        """Remove a session's credentials, keeping its registry entry"""
        async with self._lock:
            self.registry.get(session_id)

            if session_id == self.current_session:
                if not force_disconnect:
                    raise ActiveSessionConflict(session_id)
                await self._teardown()
                self.current_session = None

            self._clear_auth_data(session_id, strict=True)
            self.registry.mark_inactive(session_id)

            await self._publish_sessions()
            await self.events.status("disconnected", "Session cleared successfully")

    async def force_clear(self, session_id: str) -> None:
        """Operator-requested wipe of a (possibly stuck) session, without reinitializing"""
        async with self._lock:
            self.registry.get(session_id)
            logger.info(f"Force clear requested for session: {session_id}")

            if session_id == self.current_session:
                await self._teardown()
                self.current_session = None
            self.is_reinitializing = False
            self.auth_failures.pop(session_id, None)

            self._clear_auth_data(session_id, strict=True)
            self.registry.mark_inactive(session_id)

            await self._publish_sessions()
            await self.events.status("disconnected", "Session force-cleared. Ready to reconnect.")
            await self.events.publish(GatewayEvent.SESSION_FORCE_CLEARED, {
                "sessionId": session_id,
                "reason": MANUAL_FORCE_CLEAR_REASON,
            })

    async def force_clear_and_reinitialize(
        self,
        session_id: str,
        reason: str,
        generation: Optional[int] = None,
    ) -> None:
        """
        Automatic recovery: wipe the session and start it again from scratch.

        `generation` is the handle generation the request was made for; if a
        newer handle exists by the time the lock is acquired, the request is
        stale and ignored. Failure to reinitialize is terminal.
        """
        async with self._lock:
            if generation is not None and generation != self.generation:
                logger.info(f"Ignoring stale force cleanup for session {session_id}: {reason}")
                return

            logger.warning(f"Force cleanup triggered for session {session_id}: {reason}")
            await self._teardown()
            self._clear_auth_data(session_id)

            await self.events.publish(GatewayEvent.SESSION_FORCE_CLEARED, {
                "sessionId": session_id,
                "reason": reason,
                "message": f"Session was automatically cleared due to: {reason}. Please scan QR code again.",
            })
            await self.events.status(
                "reconnecting", "Session was corrupted and has been cleared. Reinitializing..."
            )

            await asyncio.sleep(self.config.force_cleanup_delay)

            # Health monitoring stays off for this attempt; a second stall is not auto-recovered
            try:
                await self._initialize_locked(session_id)
            except Exception as e:
                logger.error(f"Failed to reinitialize after force cleanup: {e}")
                await self.events.publish(GatewayEvent.ERROR, {
                    "message": "Failed to reinitialize. Please restart the application.",
                })
                await self.events.publish(GatewayEvent.SESSION_INIT_FAILED, {
                    "message": str(e),
                    "sessionId": session_id,
                })

    async def delete_session(self, session_id: str) -> None:
        async with self._lock:
            if session_id == self.current_session:
                raise ActiveSessionConflict(
                    session_id, "Cannot delete active session. Switch to another session first."
                )
            self.registry.get(session_id)
            self._clear_auth_data(session_id, strict=True)
            self.registry.delete(session_id)
            self.auth_failures.pop(session_id, None)
            await self._publish_sessions()

    async def create_session(self, name: str) -> Session:
        async with self._lock:
            session = self.registry.create(name)
            await self._publish_sessions()
            return session

    async def logout(self) -> None:
        """Log the live handle out of WhatsApp"""
        client = self.client
        if client is None:
            raise ClientNotInitialized("Client not initialized")
        await client.logout()

    async def shutdown(self) -> None:
        """Stop timers, destroy the handle and flush pending webhooks"""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        async with self._lock:
            await self._teardown()

        await self.webhook.close()

    # =========================================================================
    # NOTIFICATION HANDLERS (called by the fan-out)
    # =========================================================================

    async def handle_auth_failure(self, message: str, generation: int) -> None:
        logger.error(f"Authentication failure: {message}")
        self.status.mark_auth_failure()
        self.health.stop()
        await self.events.publish(GatewayEvent.AUTH_FAILURE, {"message": message})
        self.webhook.dispatch(WebhookEvent.AUTH_FAILURE, {"message": message})

        session_id = self.current_session
        if not session_id or self.is_reinitializing:
            return

        retries = self.auth_failures.get(session_id, 0)
        if retries >= self.config.auth_failure_retry_limit:
            logger.warning("Auth failure after retry - clearing session completely")
            self._clear_auth_data(session_id)
            await self.events.status(
                "error",
                "Authentication failed multiple times. Session has been cleared. Please scan QR code again.",
            )
            return

        self.auth_failures[session_id] = retries + 1
        self.is_reinitializing = True
        self.spawn(self._reinitialize_after_auth_failure(session_id, generation))

    async def handle_disconnected(self, reason: str, generation: int) -> None:
        logger.warning(f"Client disconnected: {reason}")
        self.status.reset()
        self.health.stop()
        self.poller.reset()
        await self.events.publish(GatewayEvent.DISCONNECTED, {"reason": reason})
        self.webhook.dispatch(WebhookEvent.DISCONNECTED, {"reason": reason})

        if reason in AUTH_CLEARING_DISCONNECT_REASONS and self.current_session:
            logger.info(f"Disconnected due to {reason} - clearing session cache")
            self._clear_auth_data(self.current_session)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Run `coro` in the background, keeping a reference and logging failures"""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background lifecycle task failed: {error}")

    async def _run_switch(self, session_id: str) -> None:
        try:
            await self.select_session(session_id)
        except GatewayError as e:
            logger.error(f"Session switch to {session_id} failed: {e}")

    async def _select_locked(self, session_id: str) -> None:
        self.registry.get(session_id)

        await self._teardown()
        await self.events.status("connecting", "Initializing WhatsApp client...")
        self.health.start(session_id)

        try:
            await self._initialize_locked(session_id)
        except Exception as e:
            if is_recoverable_init_error(e):
                logger.warning("Initialization failed with recoverable error - clearing session")
                self.health.stop()
                await self._discard_client()
                self._clear_auth_data(session_id)
                await self.events.publish(GatewayEvent.SESSION_INIT_FAILED, {
                    "message": "Session data was corrupted and has been cleared. Please try again.",
                    "sessionId": session_id,
                })
                return

            logger.error(f"Session selection error: {e}")
            self.health.stop()
            await self.events.publish(GatewayEvent.SESSION_INIT_FAILED, {
                "message": str(e),
                "sessionId": session_id,
            })
            if isinstance(e, InitializationFailed):
                raise
            raise InitializationFailed(session_id, 1, e) from e

    async def _initialize_locked(self, session_id: str) -> None:
        """Create and start a handle for `session_id`, retrying with backoff"""
        logger.info(f"Initializing WhatsApp client for session: {session_id}...")
        self.current_session = session_id
        if session_id in self.registry:
            self.registry.mark_active(session_id)

        attempts = self.config.init_retry_attempts
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            client = self.client if self.client is not None else self._create_client(session_id)
            try:
                logger.info(f"Attempting to initialize WhatsApp client... ({attempt}/{attempts})")
                await client.initialize()
                logger.info("WhatsApp client initialization started successfully")
                return
            except Exception as e:
                last_error = e
                logger.error(f"Initialization attempt failed: {e}")
                if attempt < attempts:
                    logger.info(
                        f"Retrying in {self.config.init_retry_backoff} seconds... "
                        f"({attempts - attempt} attempts remaining)"
                    )
                    await asyncio.sleep(self.config.init_retry_backoff)
                    await self._discard_client()

        logger.error(f"Failed to initialize WhatsApp client: {last_error}")
        await self._discard_client()
        self.status.mark_error()
        await self.events.publish(GatewayEvent.ERROR, {"message": str(last_error)})
        self.webhook.dispatch(WebhookEvent.INITIALIZATION_ERROR, {"error": str(last_error)})
        raise InitializationFailed(session_id, attempts, last_error) from last_error

    def _create_client(self, session_id: str) -> ChatClient:
        self.generation += 1
        generation = self.generation
        client = self.factory.create(session_id, self._auth_root_for(session_id))
        client.on_notification(self.fanout.bind(client, generation))
        self.client = client
        logger.debug(f"Created client for session {session_id} (generation {generation})")
        return client

    def _auth_root_for(self, session_id: str) -> Path:
        # LocalAuth wants the root that contains session-<id>
        return self.auth_store.path_for(session_id).parent

    async def _discard_client(self) -> None:
        """Detach and destroy the live handle; destroy errors are only logged"""
        client = self.client
        self.client = None
        if client is None:
            return
        try:
            await client.destroy()
        except Exception as e:
            logger.error(f"Error destroying client: {e}")

    async def _teardown(self) -> None:
        """Stop all supervision, drop the handle and reset client state"""
        self.health.stop()
        self.poller.reset()
        self.timers.cancel_all()
        await self._discard_client()
        self.status.reset()

    def _clear_auth_data(self, session_id: str, strict: bool = False) -> bool:
        try:
            self.auth_store.clear(session_id)
            return True
        except AuthDataClearError as e:
            if strict:
                raise
            logger.error(f"Failed to clear auth data for session {session_id}: {e}")
            return False

    async def _publish_sessions(self) -> None:
        await self.events.publish(GatewayEvent.SESSIONS_UPDATED, {"sessions": self.registry.to_list()})

    async def _reinitialize_after_auth_failure(self, session_id: str, generation: int) -> None:
        try:
            async with self._lock:
                if generation != self.generation:
                    logger.info(f"Skipping auth-failure reinit for session {session_id}: client was replaced")
                    return

                await self._teardown()
                self._clear_auth_data(session_id)
                await self.events.status("disconnected", "Session reset. Generating new QR...")

                self.health.start(session_id)
                await self._initialize_locked(session_id)
        except Exception as e:
            logger.error(f"Failed to reinitialize after auth failure: {e}")
            self.health.stop()
        finally:
            self.is_reinitializing = False

    def _on_stuck(self, session_id: str, reason: str) -> None:
        logger.warning(str(StuckSession(session_id, reason)))
        self.spawn(self.force_clear_and_reinitialize(session_id, reason, generation=self.generation))

    async def _on_poll_exhausted(self, generation: int) -> None:
        session_id = self.current_session
        if session_id is None or self.status.ready:
            return

        await self.events.status("error", "Client failed to become ready. Automatically clearing session...")

        def _grace_expired():
            if self.status.ready or generation != self.generation or self.current_session != session_id:
                return
            self.spawn(self.force_clear_and_reinitialize(
                session_id, POLL_EXHAUSTED_REASON, generation=generation
            ))

        self.timers.call_later(POLL_GRACE_TIMER, self.config.poll_exhausted_grace, _grace_expired)
