"""Public models for pyvpnstate."""

from pyvpnstate.models.state import (
    ConnectionState,
    ErrorState,
    ImcState,
    RemediationInstruction,
    VpnStateSnapshot,
)

__all__ = [
    "ConnectionState",
    "ErrorState",
    "ImcState",
    "RemediationInstruction",
    "VpnStateSnapshot",
]
