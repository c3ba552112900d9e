"""
Storage cell: the leaf value holder underneath every node.

A cell stores one value and notifies its subscribers whenever the value is
replaced. Subscribers receive ``(new_value, old_value)``.
"""

from typing import Any, Callable, List

Disposer = Callable[[], None]


class StorageCell:
    """Single mutable value holder with change notification."""

    __slots__ = ("_value", "_subscribers")

    def __init__(self, initial_value: Any = None):
        self._value = initial_value
        self._subscribers: List[Callable[[Any, Any], None]] = []

    def get(self) -> Any:
        return self._value

    def set(self, value: Any) -> None:
        old_value = self._value
        self._value = value
        # Iterate over a copy: subscribers may unsubscribe while being notified
        for subscriber in list(self._subscribers):
            subscriber(value, old_value)

    def subscribe(self, callback: Callable[[Any, Any], None]) -> Disposer:
        """Subscribe to value replacement. Returns a disposer."""
        if callback not in self._subscribers:
            self._subscribers.append(callback)

        def dispose() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return dispose

    def clear_subscribers(self) -> None:
        self._subscribers.clear()

    def __repr__(self) -> str:
        return f"StorageCell({self._value!r})"
