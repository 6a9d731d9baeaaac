"""Observable content-version signal consumed by the presentation layer."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict

from .models import NO_CONTENT, ContentLocation, ContentState

__all__ = ["ContentVersionSignal", "Subscriber"]

logger = logging.getLogger(__name__)

Subscriber = Callable[[ContentState], None]


class ContentVersionSignal:
    """Holds the current :class:`ContentState` and notifies subscribers on change.

    The state is an immutable snapshot swapped under a lock, so readers on any
    thread always see a complete ``(version, location)`` pair.  The version
    only moves forward, one step per committed generation.
    """

    def __init__(self, location: ContentLocation = NO_CONTENT) -> None:
        self._lock = threading.Lock()
        self._state = ContentState(version=0, location=location)
        self._subscribers: Dict[int, Subscriber] = {}
        self._next_token = 0

    def current(self) -> ContentState:
        with self._lock:
            return self._state

    @property
    def version(self) -> int:
        return self.current().version

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""

        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def advance(self, location: ContentLocation) -> ContentState:
        """Increment the version by one and publish ``location``."""

        with self._lock:
            self._state = ContentState(version=self._state.version + 1, location=location)
            state = self._state
        self._publish(state)
        return state

    def relocate(self, location: ContentLocation) -> ContentState:
        """Publish a new location without touching the version."""

        with self._lock:
            if self._state.location == location:
                return self._state
            self._state = ContentState(version=self._state.version, location=location)
            state = self._state
        self._publish(state)
        return state

    def _publish(self, state: ContentState) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
        for callback in subscribers:
            try:
                callback(state)
            except Exception:
                logger.exception("content subscriber failed", extra={"version": state.version})
