"""Serialized execution context.

Every mutation request, listener (un)registration and retry tick becomes a
unit of work posted with ``loop.call_soon_threadsafe``. The event loop runs
units one at a time in arrival order, so state is never touched by two
threads and listeners never see a half applied change.

The loop is either the caller's running loop (:meth:`attach`) or a private
loop on a dedicated daemon thread (:meth:`start`).
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from pyvpnstate._constants import DEFAULT_THREAD_NAME
from pyvpnstate.exceptions import DispatcherNotRunningError, VpnStateContextError, VpnStateError
from pyvpnstate.state.listeners import ListenerRegistry
from pyvpnstate.state.retry import TimerHandle

_logger = logging.getLogger(__name__)


class TimerSource(Protocol):
    """Subset of :class:`asyncio.AbstractEventLoop` used for retry deadlines."""

    def time(self) -> float: ...

    def call_at(self, when: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


def _noop() -> None:
    return None


class NotificationDispatcher:
    """Applies units of work in order and fans out change notifications.

    Parameters
    ----------
    thread_name : str
        Name of the worker thread created by :meth:`start`.
    timer : TimerSource, optional
        Clock used for retry deadlines. Defaults to the event loop.
    on_applied : callable, optional
        Called inside the context after each unit, before listeners run
        and before the unit's future resolves.
    """

    def __init__(
        self,
        *,
        thread_name: str = DEFAULT_THREAD_NAME,
        timer: TimerSource | None = None,
        on_applied: Callable[[], None] | None = None,
    ) -> None:
        self._thread_name = thread_name
        self._timer_override = timer
        self._on_applied = on_applied
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._owner_ident: int | None = None
        # futures posted but not yet run; cancelled if the loop closes under them
        self._pending: set[concurrent.futures.Future[Any]] = set()
        self._pending_lock = threading.Lock()
        self.registry = ListenerRegistry(guard=self.ensure_in_context)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._loop is not None

    def attach(self) -> None:
        """Use the running event loop of the calling thread as the context."""
        if self._loop is not None:
            raise VpnStateError("Dispatcher is already running")
        self._loop = asyncio.get_running_loop()
        self._owner_ident = threading.get_ident()
        _logger.debug("Dispatcher attached to running loop")

    def detach(self) -> None:
        self._loop = None
        self._owner_ident = None

    def start(self, timeout: float = 5.0) -> None:
        """Run the context on a private loop in a daemon thread."""
        if self._loop is not None:
            raise VpnStateError("Dispatcher is already running")
        loop = asyncio.new_event_loop()
        ready = threading.Event()

        def _run() -> None:
            asyncio.set_event_loop(loop)
            self._owner_ident = threading.get_ident()
            ready.set()
            try:
                loop.run_forever()
            finally:
                loop.close()
                self._cancel_pending()
                _logger.debug("Dispatcher loop closed")

        thread = threading.Thread(target=_run, name=self._thread_name, daemon=True)
        self._loop = loop
        self._thread = thread
        thread.start()
        if not ready.wait(timeout):
            raise VpnStateError(f"Dispatcher thread did not start within {timeout} s")
        _logger.debug("Dispatcher thread %s started", self._thread_name)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop accepting work and join the worker thread, if any.

        Units already queued ahead of the stop request are still applied;
        anything that reaches the queue after the loop has exited is cancelled.
        """
        loop = self._loop
        if loop is None:
            return
        thread = self._thread
        if thread is not None and threading.get_ident() == self._owner_ident:
            raise VpnStateContextError("stop() cannot be called from the dispatcher thread", operation="stop")
        self._loop = None
        if thread is not None:
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout)
            self._thread = None
        self._owner_ident = None
        _logger.debug("Dispatcher stopped")

    # ------------------------------------------------------------------
    # Context checks
    # ------------------------------------------------------------------

    def in_context(self) -> bool:
        return self._owner_ident is not None and threading.get_ident() == self._owner_ident

    def ensure_in_context(self, operation: str) -> None:
        if not self.in_context():
            raise VpnStateContextError(
                f"{operation} must run inside the dispatcher context",
                operation=operation,
            )

    # ------------------------------------------------------------------
    # Submitting work
    # ------------------------------------------------------------------

    def submit(self, fn: Callable[..., Any], *args: Any) -> concurrent.futures.Future[Any]:
        """Queue a mutation; listeners are notified if it returns a truthy value."""
        return self._enqueue(fn, args, notify=True)

    def call(self, fn: Callable[..., Any], *args: Any) -> concurrent.futures.Future[Any]:
        """Queue a unit that never triggers a notification (queries, registration)."""
        return self._enqueue(fn, args, notify=False)

    def flush(self) -> concurrent.futures.Future[Any]:
        """Future resolved once everything queued before it has been applied."""
        return self.call(_noop)

    async def drain(self) -> None:
        await asyncio.wrap_future(self.flush())

    def _enqueue(
        self,
        fn: Callable[..., Any],
        args: tuple[Any, ...],
        *,
        notify: bool,
    ) -> concurrent.futures.Future[Any]:
        loop = self._loop
        if loop is None:
            raise DispatcherNotRunningError("Dispatcher is not running")
        future: concurrent.futures.Future[Any] = concurrent.futures.Future()
        with self._pending_lock:
            self._pending.add(future)
        try:
            loop.call_soon_threadsafe(self._run_unit, fn, args, future, notify)
        except RuntimeError as exc:
            with self._pending_lock:
                self._pending.discard(future)
            raise DispatcherNotRunningError("Dispatcher loop is closed") from exc
        return future

    def _run_unit(
        self,
        fn: Callable[..., Any],
        args: tuple[Any, ...],
        future: concurrent.futures.Future[Any],
        notify: bool,
    ) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        if not future.set_running_or_notify_cancel():
            return
        name = getattr(fn, "__qualname__", fn)
        try:
            result = fn(*args)
        except Exception as exc:
            _logger.exception("Unit of work %s failed", name)
            self._applied(name)
            future.set_exception(exc)
            return
        applied_error = self._applied(name)
        if applied_error is not None:
            future.set_exception(applied_error)
            return
        if notify and result:
            self.notify_listeners()
        future.set_result(result)

    def _applied(self, name: object) -> Exception | None:
        """Run the ``on_applied`` hook; its failure is reported, never raised."""
        if self._on_applied is None:
            return None
        try:
            self._on_applied()
        except Exception as exc:
            _logger.exception("Publishing state after %s failed", name)
            return exc
        return None

    def _cancel_pending(self) -> None:
        with self._pending_lock:
            dropped = list(self._pending)
            self._pending.clear()
        for future in dropped:
            future.cancel()
        if dropped:
            _logger.debug("Cancelled %s unit(s) queued after stop", len(dropped))

    def notify_listeners(self) -> None:
        """Invoke every registered listener; one failure never stops the cycle."""
        self.ensure_in_context("notify_listeners")
        for listener in self.registry.snapshot():
            try:
                listener()
            except Exception:
                _logger.exception("State listener %r failed", listener)

    # ------------------------------------------------------------------
    # Timers (satisfies pyvpnstate.state.retry.TickTimer)
    # ------------------------------------------------------------------

    def _timer(self) -> TimerSource:
        if self._timer_override is not None:
            return self._timer_override
        loop = self._loop
        if loop is None:
            raise DispatcherNotRunningError("Dispatcher is not running")
        return loop

    def time(self) -> float:
        return self._timer().time()

    def post_at(self, when: float, fn: Callable[..., Any], *args: Any) -> TimerHandle:
        """At *when*, post ``fn(*args)`` into the queue as a notifying unit."""
        return self._timer().call_at(when, self._post_from_timer, fn, args)

    def _post_from_timer(self, fn: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            self._enqueue(fn, args, notify=True)
        except DispatcherNotRunningError:
            _logger.debug("Dropping timer callback %s, dispatcher stopped", getattr(fn, "__qualname__", fn))
