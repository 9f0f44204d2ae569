"""Error kinds raised by the gesture engine.

Every failure leaves the engine in the state it had before the call.
"""

from __future__ import annotations

from typing import Optional


class GestureEngineError(Exception):
    """Base class for all engine errors."""


class InvalidInput(GestureEngineError, ValueError):
    """Malformed or empty input (sequence, sample batch, definition, config)."""


class DuplicateId(GestureEngineError):
    """A gesture with this id is already registered."""

    def __init__(self, gesture_id: str):
        super().__init__(f"Gesture '{gesture_id}' is already registered")
        self.gesture_id = gesture_id


class NotFound(GestureEngineError, KeyError):
    """No gesture with this id exists."""

    def __init__(self, gesture_id: str):
        super().__init__(gesture_id)
        self.gesture_id = gesture_id

    def __str__(self) -> str:
        return f"Gesture '{self.gesture_id}' not found"


class Disposed(GestureEngineError, RuntimeError):
    """The engine has been disposed and no longer accepts mutating calls."""


class ImportRejected(GestureEngineError):
    """A library snapshot failed validation. Nothing was imported."""

    def __init__(self, problems: Optional[list[str]] = None):
        self.problems = list(problems or [])
        detail = "; ".join(self.problems[:5])
        if len(self.problems) > 5:
            detail += f" (+{len(self.problems) - 5} more)"
        super().__init__(f"Library import rejected: {detail}" if detail else "Library import rejected")
