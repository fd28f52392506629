"""cadence: interval timers and countdowns with explicit lifecycle states."""

from cadence.core.countdown import Countdown, CountdownEvents, CountdownTimer
from cadence.core.errors import (
    CallbackExecutionError,
    ConcurrentOperationError,
    InvalidCallbackError,
    InvalidConfigError,
    InvalidDurationError,
    InvalidStateError,
    MaxDurationExceededError,
    TimerError,
)
from cadence.core.scheduler import AsyncioScheduler, ManualScheduler, Scheduler, Subscription
from cadence.core.timer import (
    Timer,
    TimerConfig,
    TimerEvents,
    TimerMetrics,
    TimerSnapshot,
    TimerState,
)

__version__ = "0.1.0"

__all__ = [
    "AsyncioScheduler",
    "CallbackExecutionError",
    "ConcurrentOperationError",
    "Countdown",
    "CountdownEvents",
    "CountdownTimer",
    "InvalidCallbackError",
    "InvalidConfigError",
    "InvalidDurationError",
    "InvalidStateError",
    "ManualScheduler",
    "MaxDurationExceededError",
    "Scheduler",
    "Subscription",
    "Timer",
    "TimerConfig",
    "TimerError",
    "TimerEvents",
    "TimerMetrics",
    "TimerSnapshot",
    "TimerState",
]
