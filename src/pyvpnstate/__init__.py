"""pyvpnstate - VPN connection-state coordinator with backoff reconnect."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyvpnstate")
except PackageNotFoundError:
    __version__ = "0+local"
from pyvpnstate.config import VpnStateConfig
from pyvpnstate.daemon import VpnDaemon
from pyvpnstate.dispatcher import NotificationDispatcher
from pyvpnstate.exceptions import (
    DispatcherNotRunningError,
    VpnStateConfigError,
    VpnStateContextError,
    VpnStateError,
)
from pyvpnstate.models import (
    ConnectionState,
    ErrorState,
    ImcState,
    RemediationInstruction,
    VpnStateSnapshot,
)
from pyvpnstate.service import VpnStateService
from pyvpnstate.state.listeners import ListenerRegistry, StateListener
from pyvpnstate.state.retry import BASE_TIMEOUTS_MS, RetryPhase, RetryScheduler, RetryTimeoutProvider
from pyvpnstate.state.store import StateStore

__all__ = [
    "__version__",
    "BASE_TIMEOUTS_MS",
    "ConnectionState",
    "DispatcherNotRunningError",
    "ErrorState",
    "ImcState",
    "ListenerRegistry",
    "NotificationDispatcher",
    "RemediationInstruction",
    "RetryPhase",
    "RetryScheduler",
    "RetryTimeoutProvider",
    "StateListener",
    "StateStore",
    "VpnDaemon",
    "VpnStateConfig",
    "VpnStateConfigError",
    "VpnStateContextError",
    "VpnStateError",
    "VpnStateService",
    "VpnStateSnapshot",
]
