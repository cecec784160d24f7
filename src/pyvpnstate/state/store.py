"""Authoritative in-memory connection state.

This is the only component allowed to change the tracked fields. Every
mutator returns whether an observable change happened; the dispatcher
notifies listeners if and only if it did.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pyvpnstate.models.state import (
    ConnectionState,
    ErrorState,
    ImcState,
    RemediationInstruction,
    VpnStateSnapshot,
)
from pyvpnstate.state.retry import RetryScheduler

_logger = logging.getLogger(__name__)


class StateStore:
    """Connection state plus the retry bookkeeping it drives.

    Parameters
    ----------
    retry : RetryScheduler
        Countdown started and cancelled by error transitions.
    guard : callable, optional
        Called with the operation name before every mutation. The dispatcher
        passes a check that raises
        :class:`~pyvpnstate.exceptions.VpnStateContextError` when invoked
        from outside its serialized context.
    """

    def __init__(
        self,
        *,
        retry: RetryScheduler,
        guard: Callable[[str], None] | None = None,
    ) -> None:
        self._retry = retry
        self._guard = guard
        self._connection_id = 0
        self._profile: Any = None
        self._state = ConnectionState.DISABLED
        self._error = ErrorState.NO_ERROR
        self._imc_state = ImcState.UNKNOWN
        self._remediation: list[RemediationInstruction] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def connection_id(self) -> int:
        return self._connection_id

    @property
    def profile(self) -> Any:
        return self._profile

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def error_state(self) -> ErrorState:
        return self._error

    @property
    def imc_state(self) -> ImcState:
        return self._imc_state

    @property
    def remediation_instructions(self) -> tuple[RemediationInstruction, ...]:
        return tuple(self._remediation)

    @property
    def retry(self) -> RetryScheduler:
        return self._retry

    def snapshot(self) -> VpnStateSnapshot:
        """Copy the current state into an immutable model."""
        return VpnStateSnapshot(
            connection_id=self._connection_id,
            profile=self._profile,
            state=self._state,
            error_state=self._error,
            imc_state=self._imc_state,
            remediation_instructions=tuple(self._remediation),
            retry_timeout_ms=self._retry.timeout_ms,
            retry_in_ms=self._retry.remaining_ms,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _check(self, operation: str) -> None:
        if self._guard is not None:
            self._guard(operation)

    def start_connection(self, profile: Any) -> bool:
        """Begin a fresh attempt. Always reported as a change."""
        self._check("start_connection")
        self._retry.cancel()
        self._connection_id += 1
        self._profile = profile
        self._state = ConnectionState.CONNECTING
        self._error = ErrorState.NO_ERROR
        self._imc_state = ImcState.UNKNOWN
        self._remediation.clear()
        _logger.debug("Connection %s started", self._connection_id)
        return True

    def set_state(self, state: ConnectionState) -> bool:
        self._check("set_state")
        state = ConnectionState(state)
        if state is ConnectionState.CONNECTED:
            # in case there is an error later on
            self._retry.reset_attempts()
        if self._state == state:
            return False
        _logger.debug("State %s -> %s", self._state, state)
        self._state = state
        return True

    def set_error(self, error: ErrorState) -> bool:
        self._check("set_error")
        error = ErrorState(error)
        if self._error == error:
            return False
        if self._error is ErrorState.NO_ERROR:
            self._retry.start(error)
        elif error is ErrorState.NO_ERROR:
            self._retry.cancel()
        _logger.debug("Error %s -> %s", self._error, error)
        self._error = error
        return True

    def set_imc_state(self, state: ImcState) -> bool:
        """Update the IMC state; ``UNKNOWN`` always drops remediation instructions."""
        self._check("set_imc_state")
        state = ImcState(state)
        if state is ImcState.UNKNOWN:
            self._remediation.clear()
        if self._imc_state == state:
            return False
        self._imc_state = state
        return True

    def add_remediation_instruction(self, instruction: RemediationInstruction) -> bool:
        """Append an instruction. Never a notifiable change on its own."""
        self._check("add_remediation_instruction")
        instruction = RemediationInstruction.model_validate(instruction)
        self._remediation.append(instruction)
        return False

    def disconnect(self) -> bool:
        self._check("disconnect")
        self._retry.cancel()
        return self.set_error(ErrorState.NO_ERROR)
