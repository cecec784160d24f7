"""Observer set notified on effective state changes."""

from __future__ import annotations

from collections.abc import Callable

#: A listener takes no arguments; it reads whatever state it needs.
StateListener = Callable[[], None]


class ListenerRegistry:
    """Registered listeners in registration order.

    Single writer: only the serialized context mutates the registry, which
    ``guard`` enforces. Notify cycles iterate a :meth:`snapshot`, so changes
    made while a cycle runs apply to the next one.
    """

    def __init__(self, *, guard: Callable[[str], None] | None = None) -> None:
        self._guard = guard
        # dict as an insertion-ordered set
        self._listeners: dict[StateListener, None] = {}

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, listener: object) -> bool:
        return listener in self._listeners

    def add(self, listener: StateListener) -> None:
        if self._guard is not None:
            self._guard("register_listener")
        self._listeners[listener] = None

    def remove(self, listener: StateListener) -> None:
        if self._guard is not None:
            self._guard("unregister_listener")
        self._listeners.pop(listener, None)

    def snapshot(self) -> tuple[StateListener, ...]:
        return tuple(self._listeners)
