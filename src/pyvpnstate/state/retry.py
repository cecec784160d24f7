"""Exponential backoff and reconnect countdown.

The countdown is a small state machine (``IDLE`` / ``COUNTING_DOWN``). Ticks
are armed at absolute deadlines on a :class:`TickTimer` and carry the
generation that was current when they were armed; cancelling bumps the
generation so a tick that was already queued becomes a no-op.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any, Protocol

from pyvpnstate._constants import MAX_RETRY_TIMEOUT_MS, RETRY_INTERVAL_MS
from pyvpnstate.models.state import ErrorState

_logger = logging.getLogger(__name__)

#: Base reconnect timeout per error kind (milliseconds).
BASE_TIMEOUTS_MS: Mapping[ErrorState, int] = MappingProxyType(
    {
        ErrorState.AUTH_FAILED: 10_000,
        ErrorState.PEER_AUTH_FAILED: 5_000,
        ErrorState.LOOKUP_FAILED: 5_000,
        ErrorState.UNREACHABLE: 5_000,
        # needs user intervention (entering the password)
        ErrorState.PASSWORD_MISSING: 0,
        # may resolve once the device is unlocked
        ErrorState.CERTIFICATE_UNAVAILABLE: 5_000,
        ErrorState.GENERIC_ERROR: 10_000,
    }
)

#: Used for error kinds without an entry in :data:`BASE_TIMEOUTS_MS`.
DEFAULT_BASE_TIMEOUT_MS = 10_000


def base_timeout(error: ErrorState) -> int:
    return BASE_TIMEOUTS_MS.get(error, DEFAULT_BASE_TIMEOUT_MS)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TickTimer(Protocol):
    """Clock plus deadline scheduling that posts into the serialized context."""

    def time(self) -> float: ...

    def post_at(self, when: float, fn: Callable[..., Any], *args: Any) -> TimerHandle: ...


class RetryTimeoutProvider:
    """Exponential backoff for retry timeouts.

    Every call to :meth:`compute_timeout` doubles the next timeout until
    :meth:`reset` is called and the base timeout is returned again.
    """

    def __init__(self, *, max_timeout_ms: int = MAX_RETRY_TIMEOUT_MS) -> None:
        self._max_timeout_ms = max_timeout_ms
        self._attempt = 0

    @property
    def attempt(self) -> int:
        return self._attempt

    def compute_timeout(self, error: ErrorState) -> int:
        raw = base_timeout(error) * 2**self._attempt
        self._attempt += 1
        # rounded down to whole seconds before the cap is applied
        return min((raw // 1000) * 1000, self._max_timeout_ms)

    def reset(self) -> None:
        self._attempt = 0


class RetryPhase(enum.StrEnum):
    IDLE = "idle"
    COUNTING_DOWN = "counting_down"


class RetryScheduler:
    """Reconnect countdown driven by ticks posted into the serialized context.

    Parameters
    ----------
    timer : TickTimer
        Clock and scheduler. ``post_at`` must enqueue ``fn`` into the same
        queue as every other mutation request; the return value of ``fn``
        tells the dispatcher whether to notify listeners.
    on_expired : callable
        Invoked (inside the context) when the countdown reaches zero.
    interval_ms : int
        Tick granularity.
    max_timeout_ms : int
        Backoff cap.
    auto_retry : bool
        When ``False`` timeouts are computed and exposed but never armed.
    """

    def __init__(
        self,
        *,
        timer: TickTimer,
        on_expired: Callable[[], None],
        interval_ms: int = RETRY_INTERVAL_MS,
        max_timeout_ms: int = MAX_RETRY_TIMEOUT_MS,
        auto_retry: bool = True,
    ) -> None:
        self._timer = timer
        self._on_expired = on_expired
        self._interval_ms = interval_ms
        self._auto_retry = auto_retry
        self._timeouts = RetryTimeoutProvider(max_timeout_ms=max_timeout_ms)
        self._phase = RetryPhase.IDLE
        self._timeout_ms = 0
        self._remaining_ms = 0
        self._generation = 0
        self._handle: TimerHandle | None = None

    @property
    def phase(self) -> RetryPhase:
        return self._phase

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    @property
    def remaining_ms(self) -> int:
        return self._remaining_ms

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def attempt(self) -> int:
        return self._timeouts.attempt

    def reset_attempts(self) -> None:
        """Restart the backoff at the base timeout for the next error."""
        self._timeouts.reset()

    def start(self, error: ErrorState) -> int:
        """Size a countdown for *error* and arm the first tick.

        Returns the computed timeout in milliseconds. A timeout of 0 (e.g. a
        missing password) leaves the scheduler idle.
        """
        timeout = self._timeouts.compute_timeout(error)
        self._disarm()
        self._timeout_ms = self._remaining_ms = timeout
        if timeout <= 0:
            _logger.debug("No automatic retry for error=%s", error)
            return timeout
        if not self._auto_retry:
            _logger.debug("Automatic retry disabled, error=%s timeout_ms=%s", error, timeout)
            return timeout
        self._phase = RetryPhase.COUNTING_DOWN
        _logger.debug(
            "Retry countdown started error=%s timeout_ms=%s attempt=%s generation=%s",
            error,
            timeout,
            self._timeouts.attempt,
            self._generation,
        )
        self._arm(self._timer.time() + self._interval_ms / 1000.0)
        return timeout

    def cancel(self) -> None:
        """Stop any countdown; ticks armed before this call become no-ops."""
        if self._phase is RetryPhase.COUNTING_DOWN:
            _logger.debug("Retry countdown cancelled remaining_ms=%s", self._remaining_ms)
        self._disarm()
        self._timeout_ms = 0
        self._remaining_ms = 0

    def tick(self, generation: int) -> bool:
        """Apply one countdown tick. Returns whether listeners should be notified."""
        if generation != self._generation or self._phase is not RetryPhase.COUNTING_DOWN:
            _logger.debug("Ignoring stale retry tick generation=%s current=%s", generation, self._generation)
            return False
        self._handle = None
        self._remaining_ms -= self._interval_ms
        if self._remaining_ms > 0:
            # next deadline is fixed before listeners run
            self._arm(self._timer.time() + self._interval_ms / 1000.0)
            return True
        self._remaining_ms = 0
        self._phase = RetryPhase.IDLE
        _logger.info("Retry countdown elapsed after %s ms, reconnecting", self._timeout_ms)
        self._on_expired()
        return False

    def _arm(self, deadline: float) -> None:
        self._handle = self._timer.post_at(deadline, self.tick, self._generation)

    def _disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._generation += 1
        self._phase = RetryPhase.IDLE
