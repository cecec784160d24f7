"""Connection state models.

Enums for the tracked state fields, the opaque remediation payload and the
frozen snapshot that is published after every unit of work.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConnectionState(enum.StrEnum):
    """Lifecycle of the VPN connection."""

    DISABLED = "disabled"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class ErrorState(enum.StrEnum):
    """Failure classification reported by the daemon.

    These are terminal classifications, not exceptions. ``NO_ERROR`` means
    no failure is outstanding.
    """

    NO_ERROR = "no_error"
    AUTH_FAILED = "auth_failed"
    PEER_AUTH_FAILED = "peer_auth_failed"
    LOOKUP_FAILED = "lookup_failed"
    UNREACHABLE = "unreachable"
    GENERIC_ERROR = "generic_error"
    PASSWORD_MISSING = "password_missing"
    CERTIFICATE_UNAVAILABLE = "certificate_unavailable"

    @property
    def is_error(self) -> bool:
        return self is not ErrorState.NO_ERROR

    @property
    def is_retryable(self) -> bool:
        """Whether an automatic reconnect makes sense for this kind.

        A missing password needs user input, everything else may resolve on
        its own (a certificate can become available once the device is
        unlocked).
        """
        return self.is_error and self is not ErrorState.PASSWORD_MISSING


class ImcState(enum.IntEnum):
    """Result of the network access control integrity check.

    Values mirror the TNC action recommendations. Any value without a
    mapped member resolves to ``UNKNOWN`` instead of raising ``ValueError``.
    """

    UNKNOWN = -1
    ALLOW = 0
    BLOCK = 1
    ISOLATE = 2

    @classmethod
    def _missing_(cls, value: object) -> ImcState:
        return cls.UNKNOWN


class RemediationInstruction(BaseModel):
    """Guidance on how the client must remediate to regain network access.

    The coordinator never inspects instructions; it only keeps them in
    arrival order until the IMC state is reset.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    title: str
    description: str = ""
    header: str | None = None
    items: tuple[str, ...] = ()

    @field_validator("title")
    @classmethod
    def _require_title(cls, value: str) -> str:
        if not value:
            raise ValueError("title must be non-empty")
        return value


class VpnStateSnapshot(BaseModel):
    """Consistent copy of the coordinator state.

    Produced inside the serialized context after each unit of work, so
    readers on other threads never observe a partially applied mutation.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    connection_id: int = Field(default=0, ge=0)
    profile: Any = None
    state: ConnectionState = ConnectionState.DISABLED
    error_state: ErrorState = ErrorState.NO_ERROR
    imc_state: ImcState = ImcState.UNKNOWN
    remediation_instructions: tuple[RemediationInstruction, ...] = ()
    retry_timeout_ms: int = Field(default=0, ge=0)
    retry_in_ms: int = Field(default=0, ge=0)

    @property
    def retry_timeout(self) -> int:
        """Total seconds of the current reconnect countdown."""
        return self.retry_timeout_ms // 1000

    @property
    def retry_in(self) -> int:
        """Seconds left until the automatic reconnect."""
        return self.retry_in_ms // 1000
