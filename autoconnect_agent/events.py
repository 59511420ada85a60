"""Minimal publish/subscribe channel for status and sample events."""

from __future__ import annotations

from typing import Callable, Generic, List, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Subscriber = Callable[[T], None]


class EventChannel(Generic[T]):
    """Synchronous callback registry.

    ``publish`` iterates over a copy of the subscriber list, so a callback
    may unsubscribe itself (or another subscriber) while being notified.
    A failing subscriber is logged and does not stop delivery to the rest.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._subscribers: List[Subscriber[T]] = []

    def subscribe(self, callback: Subscriber[T]) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber[T]) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def publish(self, event: T) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("event_subscriber_failed", channel=self._name)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
