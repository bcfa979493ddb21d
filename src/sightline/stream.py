"""Latest-value observable streams.

A ``Subject`` holds the most recent value and delivers it to every
subscriber, immediately on subscription and then on each ``send``, in
the order values were sent.
"""

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subject(Generic[T]):
    def __init__(self, initial: T) -> None:
        self._value = initial
        self._subscribers: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback`` and replay the current value to it.

        Returns a function that removes the subscription.
        """
        self._subscribers.append(callback)
        self._deliver(callback, self._value)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def send(self, value: T) -> None:
        self._value = value
        for callback in list(self._subscribers):
            self._deliver(callback, value)

    @staticmethod
    def _deliver(callback: Callable[[T], None], value: T) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("Subscriber %r failed", callback)
