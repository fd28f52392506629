"""Error taxonomy shared by the timer primitives."""

from __future__ import annotations

from typing import Any


class TimerError(Exception):
    """Base class for every error raised or reported by a timer."""


class InvalidConfigError(TimerError):
    """Raised when a timer is configured with invalid values."""


class InvalidDurationError(InvalidConfigError):
    """Raised when a countdown duration or interval is not a positive finite number."""


class InvalidStateError(TimerError):
    """Raised (or reported) when an operation is not valid from the current state."""

    def __init__(self, message: str, state: Any = None) -> None:
        super().__init__(message)
        self.state = state


class InvalidCallbackError(TimerError):
    """Raised when a tick callback is not callable."""


class CallbackExecutionError(TimerError):
    """Reported when the user tick callback raised during a tick."""

    def __init__(self, message: str, original: BaseException | None = None) -> None:
        super().__init__(message)
        self.original = original


class MaxDurationExceededError(TimerError):
    """Reported when accumulated elapsed time passes the configured ceiling."""

    def __init__(self, elapsed_ms: float, max_duration_ms: float) -> None:
        super().__init__(
            f"Maximum duration exceeded: {elapsed_ms:g}ms elapsed, limit is {max_duration_ms:g}ms"
        )
        self.elapsed_ms = elapsed_ms
        self.max_duration_ms = max_duration_ms


class ConcurrentOperationError(TimerError):
    """Raised when a state-mutating operation overlaps another one in flight."""

    def __init__(self, operation: str, pending: str | None = None) -> None:
        detail = f" ({pending} in progress)" if pending else ""
        super().__init__(f"Cannot {operation}: another operation is in progress{detail}")
        self.operation = operation
        self.pending = pending
