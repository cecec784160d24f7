"""VPN connection-state coordinator.

:class:`VpnStateService` is the entry point for both collaborators: the
protocol daemon reports progress through the setters, the presentation layer
registers listeners and reads the accessors. All setters may be called from
any thread; they only enqueue a request and return a future.
"""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import ValidationError

from pyvpnstate.config import VpnStateConfig
from pyvpnstate.daemon import VpnDaemon
from pyvpnstate.dispatcher import NotificationDispatcher, TimerSource
from pyvpnstate.exceptions import VpnStateContextError
from pyvpnstate.models.state import (
    ConnectionState,
    ErrorState,
    ImcState,
    RemediationInstruction,
    VpnStateSnapshot,
)
from pyvpnstate.state.listeners import StateListener
from pyvpnstate.state.retry import RetryScheduler
from pyvpnstate.state.store import StateStore

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class VpnStateService:
    """Tracks one VPN connection and reconnects with exponential backoff.

    Usage::

        service = VpnStateService(daemon, config=VpnStateConfig.from_env())
        with service:
            service.register_listener(ui.refresh)
            service.start_connection(profile)

    or, sharing the application's event loop::

        async with VpnStateService(daemon) as service:
            ...

    Readers get the snapshot published after the last applied request, so a
    value read from another thread is never torn.
    """

    def __init__(
        self,
        daemon: VpnDaemon | None = None,
        *,
        config: VpnStateConfig | None = None,
        timer: TimerSource | None = None,
    ) -> None:
        self._config = config or VpnStateConfig()
        self._daemon = daemon
        self._dispatcher = NotificationDispatcher(
            thread_name=self._config.thread_name,
            timer=timer,
            on_applied=self._publish,
        )
        self._retry = RetryScheduler(
            timer=self._dispatcher,
            on_expired=self._connect_now,
            interval_ms=self._config.retry_interval_ms,
            max_timeout_ms=self._config.max_retry_timeout_ms,
            auto_retry=self._config.auto_retry,
        )
        self._store = StateStore(retry=self._retry, guard=self._dispatcher.ensure_in_context)
        self._published = self._store.snapshot()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def config(self) -> VpnStateConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._dispatcher.is_running

    def start(self) -> None:
        """Run the serialized context on a dedicated thread."""
        self._dispatcher.start()

    def stop(self) -> None:
        """Cancel any countdown and join the dispatcher thread."""
        if not self._dispatcher.is_running:
            return
        if self._dispatcher.in_context():
            raise VpnStateContextError("stop() cannot be called from the dispatcher context", operation="stop")
        self._dispatcher.call(self._retry.cancel).result(timeout=5.0)
        self._dispatcher.stop()

    def __enter__(self) -> VpnStateService:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()

    async def __aenter__(self) -> VpnStateService:
        self._dispatcher.attach()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.drain()
        # on the loop thread, at a request boundary
        self._retry.cancel()
        self._publish()
        self._dispatcher.detach()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def register_listener(self, listener: StateListener) -> concurrent.futures.Future[None]:
        """Register a zero-argument callback invoked after each effective change."""
        return self._dispatcher.call(self._dispatcher.registry.add, listener)

    def unregister_listener(self, listener: StateListener) -> concurrent.futures.Future[None]:
        return self._dispatcher.call(self._dispatcher.registry.remove, listener)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def start_connection(self, profile: Any) -> concurrent.futures.Future[bool]:
        """Begin a new attempt with *profile*; always notifies listeners."""
        return self._dispatcher.submit(self._store.start_connection, profile)

    def set_state(
        self,
        state: ConnectionState,
        *,
        connection_id: int | None = None,
    ) -> concurrent.futures.Future[bool]:
        try:
            state = ConnectionState(state)
        except ValueError as exc:
            return self._reject("set_state", state, exc)
        return self._dispatcher.submit(self._apply_report, self._store.set_state, state, connection_id)

    def set_error(
        self,
        error: ErrorState,
        *,
        connection_id: int | None = None,
    ) -> concurrent.futures.Future[bool]:
        try:
            error = ErrorState(error)
        except ValueError as exc:
            return self._reject("set_error", error, exc)
        return self._dispatcher.submit(self._apply_report, self._store.set_error, error, connection_id)

    def set_imc_state(
        self,
        state: ImcState,
        *,
        connection_id: int | None = None,
    ) -> concurrent.futures.Future[bool]:
        """Update the IMC state; integers without a mapped member become ``UNKNOWN``."""
        state = ImcState(state)
        return self._dispatcher.submit(self._apply_report, self._store.set_imc_state, state, connection_id)

    def add_remediation_instruction(
        self,
        instruction: RemediationInstruction,
        *,
        connection_id: int | None = None,
    ) -> concurrent.futures.Future[bool]:
        """Queue an instruction. Listeners are not notified.

        Mappings are validated into a :class:`RemediationInstruction`; anything
        else that does not validate is rejected before it reaches the store.
        """
        try:
            instruction = RemediationInstruction.model_validate(instruction)
        except ValidationError as exc:
            return self._reject("add_remediation_instruction", instruction, exc)
        return self._dispatcher.submit(
            self._apply_report,
            self._store.add_remediation_instruction,
            instruction,
            connection_id,
        )

    def disconnect(self) -> concurrent.futures.Future[bool]:
        """Cancel any pending retry, clear the error and ask the daemon to stop."""
        return self._dispatcher.submit(self._disconnect_now)

    def connect(self) -> concurrent.futures.Future[None]:
        """Ask the daemon to start. Results arrive later through the setters."""
        return self._dispatcher.call(self._connect_now)

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    def flush(self) -> concurrent.futures.Future[Any]:
        """Future resolved once every request submitted so far is applied."""
        return self._dispatcher.flush()

    async def drain(self) -> None:
        await self._dispatcher.drain()

    def query(self, fn: Callable[[StateStore], T]) -> concurrent.futures.Future[T]:
        """Run a read-only *fn* against the store inside the context."""
        return self._dispatcher.call(fn, self._store)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> VpnStateSnapshot:
        return self._published

    @property
    def connection_id(self) -> int:
        """Increased by every start_connection; lets callers drop stale reports."""
        return self._published.connection_id

    @property
    def profile(self) -> Any:
        return self._published.profile

    @property
    def state(self) -> ConnectionState:
        return self._published.state

    @property
    def error_state(self) -> ErrorState:
        return self._published.error_state

    @property
    def imc_state(self) -> ImcState:
        return self._published.imc_state

    @property
    def remediation_instructions(self) -> tuple[RemediationInstruction, ...]:
        return self._published.remediation_instructions

    @property
    def retry_timeout(self) -> int:
        """Total seconds of the current reconnect countdown."""
        return self._published.retry_timeout

    @property
    def retry_in(self) -> int:
        """Seconds until the automatic reconnect."""
        return self._published.retry_in

    # ------------------------------------------------------------------
    # Inside the context
    # ------------------------------------------------------------------

    def _reject(self, operation: str, value: Any, exc: Exception) -> concurrent.futures.Future[bool]:
        """Fail a request on its own future without queueing it."""
        _logger.warning("Rejected %s(%r): %s", operation, value, exc)
        future: concurrent.futures.Future[bool] = concurrent.futures.Future()
        future.set_exception(exc)
        return future

    def _publish(self) -> None:
        self._published = self._store.snapshot()

    def _apply_report(self, apply: Callable[[Any], bool], value: Any, connection_id: int | None) -> bool:
        if connection_id is not None and connection_id != self._store.connection_id:
            _logger.debug(
                "Dropping stale %s(%s) for connection %s, current is %s",
                apply.__name__,
                value,
                connection_id,
                self._store.connection_id,
            )
            return False
        return apply(value)

    def _disconnect_now(self) -> bool:
        changed = self._store.disconnect()
        self._signal_daemon("stop")
        return changed

    def _connect_now(self) -> None:
        self._signal_daemon("start")

    def _signal_daemon(self, action: str) -> None:
        daemon = self._daemon
        if daemon is None:
            _logger.debug("No daemon configured, ignoring %s request", action)
            return
        _logger.info("Requesting daemon %s", action)
        try:
            getattr(daemon, action)()
        except Exception:
            _logger.exception("Daemon %s request failed", action)
