"""Custom exception hierarchy for pyvpnstate.

Connection failures reported by the daemon are *not* exceptions; they are
:class:`~pyvpnstate.models.state.ErrorState` values. The classes below only
cover misuse of the library itself.
"""

from __future__ import annotations


class VpnStateError(Exception):
    """Base exception for all pyvpnstate errors."""


class VpnStateConfigError(VpnStateError):
    """Invalid or missing configuration."""


class VpnStateContextError(VpnStateError):
    """State was touched outside the serialized execution context.

    The store and the listener registry have a single writer: the
    dispatcher's event loop thread. Calling one of their mutators from any
    other thread raises this error instead of silently racing.
    """

    def __init__(self, message: str, *, operation: str = "") -> None:
        self.operation = operation
        super().__init__(message)


class DispatcherNotRunningError(VpnStateError):
    """A request was submitted while the dispatcher was stopped."""
