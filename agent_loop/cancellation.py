"""
Cancellation context threaded through model calls, tools and hooks.

A ``RunContext`` carries a cancellation flag and a small bag of
caller-supplied values. Derived contexts share the parent's cancellation
state, so cancelling the root stops every child.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import RunCancelledError


@dataclass
class _CancelState:
    event: threading.Event = field(default_factory=threading.Event)
    reason: str = ""


class RunContext:
    """Cancellation flag plus request-scoped values."""

    def __init__(
        self,
        values: Optional[dict[str, Any]] = None,
        _state: Optional[_CancelState] = None,
    ):
        self._state = _state or _CancelState()
        self._values: dict[str, Any] = dict(values or {})

    @classmethod
    def background(cls) -> "RunContext":
        """A fresh, never-cancelled root context."""
        return cls()

    def with_value(self, key: str, value: Any) -> "RunContext":
        """Derive a child context carrying an extra value."""
        return RunContext(values={**self._values, key: value}, _state=self._state)

    def value(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def cancel(self, reason: str = "") -> None:
        self._state.reason = reason
        self._state.event.set()

    @property
    def cancelled(self) -> bool:
        return self._state.event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._state.event.is_set():
            reason = self._state.reason
            raise RunCancelledError(
                f"run cancelled: {reason}" if reason else "run cancelled"
            )

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds``, waking early (and raising) on cancellation."""
        if self._state.event.wait(timeout=max(seconds, 0.0)):
            self.raise_if_cancelled()
