"""Protocol-daemon collaborator.

The daemon performs the actual VPN negotiation and reports progress back
through :class:`~pyvpnstate.service.VpnStateService`. The coordinator only
asks it to start or stop; both calls run inside the serialized context and
must return immediately (post a signal, spawn a process, ...).
"""

from __future__ import annotations

from typing import Protocol


class VpnDaemon(Protocol):
    def start(self) -> None:
        """Request the daemon to (re)start and bring the connection up."""
        ...

    def stop(self) -> None:
        """Request the daemon to tear the connection down."""
        ...
