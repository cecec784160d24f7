from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from pyvpnstate.exceptions import VpnStateContextError
from pyvpnstate.models.state import (
    ConnectionState,
    ErrorState,
    ImcState,
    RemediationInstruction,
)
from pyvpnstate.state.retry import RetryPhase, RetryScheduler
from pyvpnstate.state.store import StateStore


class _Handle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class _Timer:
    def __init__(self) -> None:
        self.handles: list[_Handle] = []

    def time(self) -> float:
        return 0.0

    def post_at(self, when: float, fn: Callable[..., Any], *args: Any) -> _Handle:
        handle = _Handle()
        self.handles.append(handle)
        return handle


def _store() -> tuple[StateStore, _Timer]:
    timer = _Timer()
    retry = RetryScheduler(timer=timer, on_expired=lambda: None)
    return StateStore(retry=retry), timer


def _instruction(title: str = "Update antivirus") -> RemediationInstruction:
    return RemediationInstruction(title=title, description="Signatures are outdated", items=("definitions",))


def test_initial_snapshot() -> None:
    store, _ = _store()
    snap = store.snapshot()
    assert snap.connection_id == 0
    assert snap.profile is None
    assert snap.state is ConnectionState.DISABLED
    assert snap.error_state is ErrorState.NO_ERROR
    assert snap.imc_state is ImcState.UNKNOWN
    assert snap.remediation_instructions == ()
    assert snap.retry_in == 0
    assert snap.retry_timeout == 0


def test_start_connection_always_reports_change_and_resets_fields() -> None:
    store, _ = _store()
    profile = object()

    assert store.start_connection(profile) is True
    # identical values still count as a fresh attempt
    assert store.start_connection(profile) is True

    assert store.connection_id == 2
    assert store.profile is profile
    assert store.state is ConnectionState.CONNECTING
    assert store.error_state is ErrorState.NO_ERROR
    assert store.imc_state is ImcState.UNKNOWN


def test_start_connection_clears_outstanding_error_state() -> None:
    store, timer = _store()
    store.set_error(ErrorState.UNREACHABLE)
    store.set_imc_state(ImcState.BLOCK)
    store.add_remediation_instruction(_instruction())

    store.start_connection("profile-b")

    assert store.error_state is ErrorState.NO_ERROR
    assert store.imc_state is ImcState.UNKNOWN
    assert store.remediation_instructions == ()
    assert store.retry.phase is RetryPhase.IDLE
    assert timer.handles[0].cancelled


def test_set_state_reports_change_only_when_different() -> None:
    store, _ = _store()
    assert store.set_state(ConnectionState.CONNECTING) is True
    assert store.set_state(ConnectionState.CONNECTING) is False
    assert store.set_state(ConnectionState.CONNECTED) is True


def test_connected_resets_backoff_even_without_change() -> None:
    store, _ = _store()
    store.set_state(ConnectionState.CONNECTED)
    store.set_error(ErrorState.UNREACHABLE)
    store.set_error(ErrorState.NO_ERROR)
    assert store.retry.attempt == 1

    assert store.set_state(ConnectionState.CONNECTED) is False
    assert store.retry.attempt == 0


def test_set_error_starts_and_cancels_countdown() -> None:
    store, timer = _store()
    assert store.set_error(ErrorState.UNREACHABLE) is True
    assert store.retry.phase is RetryPhase.COUNTING_DOWN
    assert store.snapshot().retry_timeout == 5

    assert store.set_error(ErrorState.UNREACHABLE) is False

    assert store.set_error(ErrorState.NO_ERROR) is True
    assert store.retry.phase is RetryPhase.IDLE
    assert timer.handles[0].cancelled
    assert store.snapshot().retry_in == 0


def test_error_to_error_keeps_running_countdown() -> None:
    store, timer = _store()
    store.set_error(ErrorState.UNREACHABLE)
    generation = store.retry.generation

    assert store.set_error(ErrorState.AUTH_FAILED) is True
    assert store.retry.generation == generation
    assert store.retry.timeout_ms == 5000
    assert len(timer.handles) == 1


def test_password_missing_never_counts_down() -> None:
    store, timer = _store()
    assert store.set_error(ErrorState.PASSWORD_MISSING) is True
    assert timer.handles == []
    assert store.retry.phase is RetryPhase.IDLE


def test_imc_unknown_clears_instructions_even_when_unchanged() -> None:
    store, _ = _store()
    store.add_remediation_instruction(_instruction("one"))
    store.add_remediation_instruction(_instruction("two"))
    assert [i.title for i in store.remediation_instructions] == ["one", "two"]

    assert store.set_imc_state(ImcState.UNKNOWN) is False
    assert store.remediation_instructions == ()


def test_imc_non_unknown_keeps_instructions() -> None:
    store, _ = _store()
    store.add_remediation_instruction(_instruction())
    assert store.set_imc_state(ImcState.ISOLATE) is True
    assert store.set_imc_state(ImcState.ISOLATE) is False
    assert len(store.remediation_instructions) == 1


def test_add_remediation_instruction_never_reports_change() -> None:
    store, _ = _store()
    assert store.add_remediation_instruction(_instruction()) is False


def test_disconnect_clears_error_and_countdown() -> None:
    store, _ = _store()
    assert store.disconnect() is False

    store.set_error(ErrorState.AUTH_FAILED)
    attempt = store.retry.attempt
    assert store.disconnect() is True
    assert store.error_state is ErrorState.NO_ERROR
    assert store.retry.timeout_ms == 0
    # the backoff exponent survives a disconnect
    assert store.retry.attempt == attempt


def test_snapshot_is_a_copy() -> None:
    store, _ = _store()
    store.add_remediation_instruction(_instruction())
    snap = store.snapshot()
    store.set_imc_state(ImcState.UNKNOWN)
    assert len(snap.remediation_instructions) == 1


def test_guard_rejects_mutation() -> None:
    def _deny(operation: str) -> None:
        raise VpnStateContextError(f"{operation} denied", operation=operation)

    timer = _Timer()
    store = StateStore(retry=RetryScheduler(timer=timer, on_expired=lambda: None), guard=_deny)

    with pytest.raises(VpnStateContextError) as exc_info:
        store.set_state(ConnectionState.CONNECTED)
    assert exc_info.value.operation == "set_state"
    assert store.state is ConnectionState.DISABLED


def test_raw_values_are_coerced_to_members() -> None:
    store, timer = _store()

    assert store.set_error("unreachable") is True  # type: ignore[arg-type]
    assert store.error_state is ErrorState.UNREACHABLE
    assert store.set_error("no_error") is True  # type: ignore[arg-type]
    assert store.error_state is ErrorState.NO_ERROR
    assert timer.handles[0].cancelled
    assert store.retry.phase is RetryPhase.IDLE

    store.add_remediation_instruction(_instruction())
    assert store.set_imc_state(-1) is False  # type: ignore[arg-type]
    assert store.remediation_instructions == ()

    store.set_state("connected")  # type: ignore[arg-type]
    assert store.state is ConnectionState.CONNECTED


def test_invalid_instruction_never_enters_store() -> None:
    store, _ = _store()
    with pytest.raises(ValueError):
        store.add_remediation_instruction("reinstall the client")  # type: ignore[arg-type]
    assert store.remediation_instructions == ()
