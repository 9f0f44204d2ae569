"""Synchronous topic-based event fan-out.

Listeners subscribe to a named topic and are called in the emitter's turn.
A listener that raises is logged and skipped; the remaining listeners still
run and the emitter's state is untouched.

Usage:
    emitter = EventEmitter()
    unsubscribe = emitter.on("gesture", lambda result: print(result.gesture_id))
    emitter.emit("gesture", result)
    unsubscribe()
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

logger = logging.getLogger("imu_gestures.events")

Listener = Callable[[Any], None]


class EventEmitter:
    """Maps topic names to subscriber lists."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, topic: str, listener: Listener) -> Callable[[], None]:
        """Subscribe to a topic. Returns a callable that unsubscribes."""
        subscribers = self._listeners.setdefault(topic, [])
        if listener not in subscribers:
            subscribers.append(listener)
        return lambda: self.off(topic, listener)

    def off(self, topic: str, listener: Listener):
        subscribers = self._listeners.get(topic)
        if subscribers and listener in subscribers:
            subscribers.remove(listener)

    def emit(self, topic: str, payload: Any = None):
        """Call every subscriber of `topic` with `payload`."""
        # Copy so listeners may unsubscribe while being dispatched
        for listener in list(self._listeners.get(topic, ())):
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener %r for '%s' failed", listener, topic)

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))

    def remove_all_listeners(self, topic: Optional[str] = None):
        if topic is None:
            self._listeners.clear()
        else:
            self._listeners.pop(topic, None)
