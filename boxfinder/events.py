"""Observable value with replay-on-subscribe.

Shared by the connectivity monitor (publishes reachability, transitions only)
and the mutation queue (publishes the pending count on every mutation).
"""

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class Observable(Generic[T]):
    """Holds a current value and a set of listeners.

    Args:
        initial: Value replayed to subscribers before the first publish.
        distinct: If True, ``publish`` only notifies when the value changes.
    """

    def __init__(self, initial: T, *, distinct: bool = False):
        self._value = initial
        self._distinct = distinct
        self._listeners: List[Listener] = []

    @property
    def value(self) -> T:
        return self._value

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``, call it with the current value, return an unsubscribe."""
        if listener not in self._listeners:
            self._listeners.append(listener)
        self._call(listener, self._value)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, value: T) -> None:
        """Update the value without notifying anyone."""
        self._value = value

    def publish(self, value: T) -> bool:
        """Update the value and notify listeners. Returns True if listeners were called."""
        changed = value != self._value
        self._value = value
        if self._distinct and not changed:
            return False
        # Copy: a listener may unsubscribe itself while being notified
        for listener in list(self._listeners):
            self._call(listener, value)
        return True

    def clear(self) -> None:
        """Drop all listeners."""
        self._listeners.clear()

    def _call(self, listener: Listener, value: T) -> None:
        try:
            listener(value)
        except Exception as e:
            logger.warning(f"Listener {listener!r} failed: {e}", exc_info=True)
