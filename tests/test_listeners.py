from __future__ import annotations

import pytest

from pyvpnstate.exceptions import VpnStateContextError
from pyvpnstate.state.listeners import ListenerRegistry


def test_snapshot_keeps_registration_order() -> None:
    registry = ListenerRegistry()
    calls: list[str] = []

    def first() -> None:
        calls.append("first")

    def second() -> None:
        calls.append("second")

    registry.add(first)
    registry.add(second)
    registry.add(first)

    assert registry.snapshot() == (first, second)
    assert len(registry) == 2


def test_remove_unknown_listener_is_noop() -> None:
    registry = ListenerRegistry()
    registry.remove(lambda: None)
    assert len(registry) == 0


def test_snapshot_is_unaffected_by_later_changes() -> None:
    registry = ListenerRegistry()

    def listener() -> None:
        return None

    registry.add(listener)
    snap = registry.snapshot()
    registry.remove(listener)

    assert snap == (listener,)
    assert listener not in registry


def test_bound_methods_unregister_by_equality() -> None:
    class _View:
        def refresh(self) -> None:
            return None

    view = _View()
    registry = ListenerRegistry()
    registry.add(view.refresh)
    registry.remove(view.refresh)
    assert len(registry) == 0


def test_guard_is_consulted() -> None:
    def _deny(operation: str) -> None:
        raise VpnStateContextError("no", operation=operation)

    registry = ListenerRegistry(guard=_deny)
    with pytest.raises(VpnStateContextError) as exc_info:
        registry.add(lambda: None)
    assert exc_info.value.operation == "register_listener"
