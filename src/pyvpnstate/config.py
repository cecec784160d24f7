"""Coordinator configuration for pyvpnstate."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyvpnstate._constants import DEFAULT_THREAD_NAME, MAX_RETRY_TIMEOUT_MS, RETRY_INTERVAL_MS
from pyvpnstate.exceptions import VpnStateConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_int(env_key: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError as exc:
        raise VpnStateConfigError(f"{env_key} must be an integer, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class VpnStateConfig:
    """Coordinator configuration.

    Parameters
    ----------
    retry_interval_ms : int
        Granularity of the reconnect countdown. Every tick subtracts this
        many milliseconds from the remaining time and is armed at an
        absolute deadline ``now + retry_interval_ms``.
    max_retry_timeout_ms : int
        Upper bound for the exponential backoff timeout.
    auto_retry : bool
        Arm the reconnect countdown when an error becomes active. When
        disabled the timeout is still computed and exposed, but no tick is
        ever scheduled.
    thread_name : str
        Name of the dispatcher thread when the service runs on its own
        thread (see :meth:`pyvpnstate.service.VpnStateService.start`).
    """

    retry_interval_ms: int = RETRY_INTERVAL_MS
    max_retry_timeout_ms: int = MAX_RETRY_TIMEOUT_MS
    auto_retry: bool = True
    thread_name: str = DEFAULT_THREAD_NAME

    def __post_init__(self) -> None:
        if self.retry_interval_ms <= 0:
            raise VpnStateConfigError(f"retry_interval_ms must be positive, got {self.retry_interval_ms}")
        if self.max_retry_timeout_ms < 0:
            raise VpnStateConfigError(f"max_retry_timeout_ms must not be negative, got {self.max_retry_timeout_ms}")
        if not self.thread_name.strip():
            raise VpnStateConfigError("thread_name must be non-empty")

    @property
    def retry_interval(self) -> float:
        """Tick interval in seconds, as used by event loop timers."""
        return self.retry_interval_ms / 1000.0

    @classmethod
    def from_env(cls, **overrides: Any) -> VpnStateConfig:
        """Create configuration from environment variables.

        Reads the optional ``VPNSTATE_*`` variables. Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        VpnStateConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_INT_MAP = {
            "VPNSTATE_RETRY_INTERVAL_MS": "retry_interval_ms",
            "VPNSTATE_MAX_RETRY_TIMEOUT_MS": "max_retry_timeout_ms",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_int(env_key, val)

        if "auto_retry" not in overrides:
            config_kwargs["auto_retry"] = _env_bool(env.get("VPNSTATE_AUTO_RETRY"), True)

        thread_name = env.get("VPNSTATE_THREAD_NAME")
        if thread_name is not None and "thread_name" not in overrides:
            config_kwargs["thread_name"] = thread_name

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
