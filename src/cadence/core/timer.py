"""Timer core -- a repeated-interval clock built as a state machine."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterator, Mapping

from cadence.core.errors import (
    CallbackExecutionError,
    ConcurrentOperationError,
    InvalidCallbackError,
    InvalidConfigError,
    InvalidStateError,
    MaxDurationExceededError,
    TimerError,
)
from cadence.core.scheduler import AsyncioScheduler, Scheduler, Subscription


class TimerState(Enum):
    """Possible states of the timer."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"


_INTERVAL_MUTABLE_STATES = frozenset({TimerState.STOPPED, TimerState.PAUSED})

# Ticks arriving early by more than this share of the interval are reported
# through ``on_drift``.
_DRIFT_THRESHOLD = 0.5
_ALIGN_EPSILON_MS = 1e-6


def _noop() -> None:
    pass


def _is_positive_finite(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimerConfig:
    """Validated timer configuration.

    ``max_duration_ms`` of ``None`` means the timer may run forever.
    """

    interval_ms: float
    auto_start: bool = False
    max_duration_ms: float | None = None
    precision: bool = False

    def __post_init__(self) -> None:
        if not _is_positive_finite(self.interval_ms):
            raise InvalidConfigError(
                f"interval_ms must be a positive finite number, got {self.interval_ms!r}"
            )
        if self.max_duration_ms is not None and not _is_positive_finite(self.max_duration_ms):
            raise InvalidConfigError(
                f"max_duration_ms must be a positive finite number, got {self.max_duration_ms!r}"
            )
        if not isinstance(self.auto_start, bool):
            raise InvalidConfigError(
                f"auto_start must be a boolean, got {type(self.auto_start).__name__}"
            )
        if not isinstance(self.precision, bool):
            raise InvalidConfigError(
                f"precision must be a boolean, got {type(self.precision).__name__}"
            )

    @property
    def ceiling_ms(self) -> float:
        """The effective maximum duration."""
        return math.inf if self.max_duration_ms is None else float(self.max_duration_ms)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> TimerConfig:
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidConfigError(f"Unknown timer option(s): {', '.join(unknown)}")
        if "interval_ms" not in data:
            raise InvalidConfigError("interval_ms is required")
        return cls(**data)


@dataclass(frozen=True)
class TimerEvents:
    """Optional lifecycle hooks.  A hook left as ``None`` is silently skipped."""

    on_start: Callable[[], Any] | None = None
    on_stop: Callable[[], Any] | None = None
    on_pause: Callable[[], Any] | None = None
    on_resume: Callable[[], Any] | None = None
    on_reset: Callable[[], Any] | None = None
    on_tick: Callable[[int], Any] | None = None
    on_drift: Callable[[float], Any] | None = None
    on_error: Callable[[Exception], Any] | None = None


@dataclass(frozen=True)
class TimerMetrics:
    total_ticks: int
    average_tick_ms: float
    drift_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalTicks": self.total_ticks,
            "averageTickMs": self.average_tick_ms,
            "driftMs": self.drift_ms,
        }


@dataclass(frozen=True)
class TimerSnapshot:
    """Saved timer bookkeeping.  All durations are in milliseconds."""

    state: TimerState
    elapsed_ms: float
    remaining_ms: float | None = None
    initial_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"state": self.state.value, "elapsedMs": self.elapsed_ms}
        if self.remaining_ms is not None:
            data["remainingMs"] = self.remaining_ms
        if self.initial_ms is not None:
            data["initialMs"] = self.initial_ms
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TimerSnapshot:
        try:
            state = TimerState(data["state"])
            elapsed_ms = float(data["elapsedMs"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidConfigError(f"Malformed timer snapshot: {dict(data)!r}") from exc
        remaining = data.get("remainingMs")
        initial = data.get("initialMs")
        return cls(
            state=state,
            elapsed_ms=elapsed_ms,
            remaining_ms=None if remaining is None else float(remaining),
            initial_ms=None if initial is None else float(initial),
        )


# ---------------------------------------------------------------------------
# Timer
# ---------------------------------------------------------------------------


class Timer:
    """A repeated-interval clock with explicit STOPPED/RUNNING/PAUSED states.

    Ticks are delivered by a :class:`~cadence.core.scheduler.Scheduler`.
    Elapsed time is accumulated from ``scheduler.now()`` deltas rather than
    from the tick count, so pause/resume cycles reflect real active time.

    State-mutating operations are guarded by a non-reentrant flag: entering
    one while another is in flight raises :class:`ConcurrentOperationError`.
    Every mutator has a coroutine twin (``start_async``, ``pause_async``, ...)
    that holds the flag across one suspension point and otherwise runs the
    same code.

    Precondition violations on ``start``, ``set_interval`` and
    ``load_snapshot`` raise.  Illegal ``pause``/``resume``/``stop`` calls are
    reported through ``on_error`` and otherwise ignored.  Faults inside a
    tick stop the timer and are reported through ``on_error`` only.

    The default :class:`~cadence.core.scheduler.AsyncioScheduler` needs a
    running event loop: starting outside one raises :class:`InvalidStateError`
    and leaves the timer STOPPED.  Pass a ``ManualScheduler`` to drive a
    timer from synchronous code.
    """

    def __init__(
        self,
        config: TimerConfig | Mapping[str, Any],
        events: TimerEvents | None = None,
        logger: logging.Logger | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        if isinstance(config, Mapping):
            config = TimerConfig.from_mapping(config)
        elif not isinstance(config, TimerConfig):
            raise InvalidConfigError(
                f"config must be a TimerConfig or a mapping, got {type(config).__name__}"
            )
        self._config: TimerConfig = config
        self._events: TimerEvents = events if events is not None else TimerEvents()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler()

        self._state: TimerState = TimerState.STOPPED
        self._subscription: Subscription | None = None
        self._callback: Callable[[], Any] | None = None
        self._elapsed_ms: float = 0.0
        self._last_tick: float = 0.0
        self._tick_count: int = 0
        self._total_tick_time: float = 0.0
        self._lock: str | None = None  # name of the operation holding it
        self._disposals: int = 0

        if config.auto_start:
            self.start(_noop)

    def __repr__(self) -> str:
        return (
            f"<Timer {self._state.value} interval={self._config.interval_ms:g}ms "
            f"elapsed={self._elapsed_ms:g}ms ticks={self._tick_count}>"
        )

    # -- properties ----------------------------------------------------------

    @property
    def config(self) -> TimerConfig:
        return self._config

    @property
    def interval_ms(self) -> float:
        return self._config.interval_ms

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is TimerState.RUNNING

    # -- public interface ----------------------------------------------------

    def start(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """Start ticking, invoking *callback* on every tick.

        Valid only from STOPPED.  Returns a cancellation procedure
        equivalent to :meth:`stop`.
        """
        with self._exclusive("start"):
            return self._start(callback)

    def pause(self) -> None:
        """Pause ticking, keeping the elapsed time.  Valid only from RUNNING."""
        with self._exclusive("pause"):
            self._pause()

    def resume(self, callback: Callable[[], Any] | None = None) -> None:
        """Resume a paused timer.

        Valid only from PAUSED.  Without *callback* the callback passed to
        the last ``start``/``resume`` keeps being used.
        """
        with self._exclusive("resume"):
            self._resume(callback)

    def stop(self) -> None:
        """Stop the timer and clear the elapsed time.  Valid from RUNNING or PAUSED."""
        with self._exclusive("stop"):
            self._stop()

    def reset(self) -> None:
        """Stop (from any state) and emit ``on_reset``."""
        with self._exclusive("reset"):
            self._reset()

    def set_interval(self, interval_ms: float) -> None:
        """Change the tick interval.  Not allowed while RUNNING."""
        with self._exclusive("set interval"):
            self._set_interval(interval_ms)

    def load_snapshot(
        self,
        snapshot: TimerSnapshot | Mapping[str, Any],
        callback: Callable[[], Any] | None = None,
    ) -> None:
        """Restore ``state`` and ``elapsed_ms`` from *snapshot*.  Valid only from STOPPED.

        Restoring a RUNNING snapshot re-attaches *callback* (or the most
        recent tick callback) so a running timer always has a live
        subscription.
        """
        with self._exclusive("load snapshot"):
            self._load_snapshot(snapshot, callback)

    async def start_async(self, callback: Callable[[], Any]) -> Callable[[], None]:
        async with self._exclusive_async("start"):
            return self._start(callback)

    async def pause_async(self) -> None:
        async with self._exclusive_async("pause"):
            self._pause()

    async def resume_async(self, callback: Callable[[], Any] | None = None) -> None:
        async with self._exclusive_async("resume"):
            self._resume(callback)

    async def stop_async(self) -> None:
        async with self._exclusive_async("stop"):
            self._stop()

    async def reset_async(self) -> None:
        async with self._exclusive_async("reset"):
            self._reset()

    async def set_interval_async(self, interval_ms: float) -> None:
        async with self._exclusive_async("set interval"):
            self._set_interval(interval_ms)

    def dispose(self) -> None:
        """Release the scheduler subscription.  Idempotent; never raises.

        A coroutine mutator still waiting to run is abandoned with
        :class:`InvalidStateError`.
        """
        self._disposals += 1
        try:
            if self._state is not TimerState.STOPPED:
                self._halt()
                self._emit("on_stop")
        except Exception as exc:
            self._log_error("Error while disposing timer", exc)
        finally:
            self._subscription = None
            self._state = TimerState.STOPPED

    def halt(self) -> None:
        """Stop from inside a tick callback without taking the operation lock.

        Emits ``on_stop`` like :meth:`stop`; does nothing when already STOPPED.
        """
        if self._state is TimerState.STOPPED:
            return
        self._halt()
        self._log_debug("Timer halted from tick")
        self._emit("on_stop")

    def get_state(self) -> TimerState:
        """Return the current timer state."""
        return self._state

    def get_elapsed_ms(self) -> float:
        """Return the accumulated active time in milliseconds."""
        return self._elapsed_ms

    def get_elapsed_seconds(self) -> int:
        """Return the accumulated active time in whole seconds (floored)."""
        return math.floor(self._elapsed_ms / 1000)

    def get_metrics(self) -> TimerMetrics:
        if self._tick_count == 0:
            return TimerMetrics(total_ticks=0, average_tick_ms=0.0, drift_ms=0.0)
        return TimerMetrics(
            total_ticks=self._tick_count,
            average_tick_ms=self._total_tick_time / self._tick_count,
            drift_ms=self._drift_ms(),
        )

    def get_snapshot(self) -> TimerSnapshot:
        return TimerSnapshot(state=self._state, elapsed_ms=self._elapsed_ms)

    # -- state transitions ---------------------------------------------------

    def _start(self, callback: Callable[[], Any]) -> Callable[[], None]:
        if self._state is not TimerState.STOPPED:
            raise InvalidStateError(f"Cannot start: timer is {self._state.value}", self._state)
        self._require_callable(callback)
        self._callback = callback
        self._subscribe()
        self._state = TimerState.RUNNING
        self._log_debug("Timer started (interval=%gms)", self._config.interval_ms)
        self._emit("on_start")
        return self.stop

    def _pause(self) -> None:
        if self._state is not TimerState.RUNNING:
            self._report(InvalidStateError(f"Cannot pause: timer is {self._state.value}", self._state))
            return
        # Keep the active time since the last tick; the paused gap is excluded.
        now = self._scheduler.now()
        self._elapsed_ms += now - self._last_tick
        self._last_tick = now
        self._unsubscribe()
        self._state = TimerState.PAUSED
        self._log_debug("Timer paused at %gms", self._elapsed_ms)
        self._emit("on_pause")

    def _resume(self, callback: Callable[[], Any] | None) -> None:
        if self._state is not TimerState.PAUSED:
            self._report(
                InvalidStateError(f"Cannot resume: timer is {self._state.value}", self._state)
            )
            return
        if callback is not None:
            self._require_callable(callback)
            self._callback = callback
        elif self._callback is None:
            self._callback = _noop
        self._subscribe()
        self._state = TimerState.RUNNING
        self._log_debug("Timer resumed at %gms", self._elapsed_ms)
        self._emit("on_resume")

    def _stop(self) -> None:
        if self._state is TimerState.STOPPED:
            self._report(InvalidStateError("Cannot stop: timer already stopped", self._state))
            return
        self._halt()
        self._log_debug("Timer stopped")
        self._emit("on_stop")

    def _reset(self) -> None:
        if self._state is TimerState.STOPPED:
            self._clear_counters()
        else:
            self._halt()
            self._emit("on_stop")
        self._log_debug("Timer reset")
        self._emit("on_reset")

    def _set_interval(self, interval_ms: float) -> None:
        if self._state not in _INTERVAL_MUTABLE_STATES:
            raise InvalidStateError(
                f"Cannot set interval: timer is {self._state.value}", self._state
            )
        self._config = dataclasses.replace(self._config, interval_ms=interval_ms)
        self._log_debug("Timer interval set to %gms", interval_ms)

    def _load_snapshot(
        self,
        snapshot: TimerSnapshot | Mapping[str, Any],
        callback: Callable[[], Any] | None,
    ) -> None:
        if self._state is not TimerState.STOPPED:
            raise InvalidStateError(
                f"Cannot load snapshot: timer is {self._state.value}", self._state
            )
        if not isinstance(snapshot, TimerSnapshot):
            snapshot = TimerSnapshot.from_dict(snapshot)
        if callback is not None:
            self._require_callable(callback)
            self._callback = callback
        self._elapsed_ms = snapshot.elapsed_ms
        if snapshot.state is TimerState.RUNNING:
            if self._callback is None:
                self._callback = _noop
            self._subscribe()
        self._state = snapshot.state
        self._log_debug("Timer restored: %s at %gms", snapshot.state.value, snapshot.elapsed_ms)

    # -- tick accounting -----------------------------------------------------

    def _on_tick(self) -> None:
        """Single tick handler shared by every path that makes the timer run."""
        if self._state is not TimerState.RUNNING:
            return
        now = self._scheduler.now()
        delta = now - self._last_tick
        self._elapsed_ms += delta
        self._total_tick_time += delta
        self._tick_count += 1
        self._last_tick = now

        if self._elapsed_ms > self._config.ceiling_ms:
            error = MaxDurationExceededError(self._elapsed_ms, self._config.ceiling_ms)
            self._halt()
            self._emit("on_stop")
            self._log_error("Timer stopped", error)
            self._emit("on_error", error)
            return

        if self._config.precision:
            drift = self._drift_ms()
            if drift > self._config.interval_ms * _DRIFT_THRESHOLD:
                self._log_debug("Timer drift of %gms detected", drift)
                self._emit("on_drift", drift)
            self._realign()

        elapsed_seconds = self.get_elapsed_seconds()
        callback = self._callback if self._callback is not None else _noop
        try:
            callback()
            self._emit("on_tick", elapsed_seconds)
        except Exception as exc:
            if isinstance(exc, TimerError):
                error: TimerError = exc
            else:
                error = CallbackExecutionError(f"Tick callback raised: {exc!r}", exc)
                error.__cause__ = exc
            if self._state is not TimerState.STOPPED:
                self._halt()
                self._emit("on_stop")
            self._log_error("Tick callback failed", error)
            self._emit("on_error", error)

    def _drift_ms(self) -> float:
        return self._tick_count * self._config.interval_ms - self._elapsed_ms

    def _aligned_delay(self) -> float:
        """Delay until the interval boundary nearest to the current elapsed time."""
        interval = self._config.interval_ms
        offset = self._elapsed_ms % interval
        if offset > interval / 2:
            offset -= interval
        return interval - offset

    def _delay_to_next_boundary(self) -> float:
        """Delay until the first interval boundary strictly ahead of elapsed time."""
        interval = self._config.interval_ms
        offset = self._elapsed_ms % interval
        if offset <= _ALIGN_EPSILON_MS:
            return interval
        return interval - offset

    def _realign(self) -> None:
        delay = self._aligned_delay()
        current = self._subscription
        if current is not None and abs(current.interval_ms - delay) <= _ALIGN_EPSILON_MS:
            return
        self._unsubscribe()
        self._subscription = self._scheduler.subscribe(delay, self._on_tick)
        self._log_debug("Next tick realigned to %gms", delay)

    # -- private helpers -----------------------------------------------------

    def _subscribe(self) -> None:
        self._last_tick = self._scheduler.now()
        if self._config.precision:
            delay = self._delay_to_next_boundary()
        else:
            delay = self._config.interval_ms
        self._subscription = self._scheduler.subscribe(delay, self._on_tick)

    def _unsubscribe(self) -> None:
        if self._subscription is not None:
            subscription, self._subscription = self._subscription, None
            self._scheduler.cancel(subscription)

    def _clear_counters(self) -> None:
        self._elapsed_ms = 0.0
        self._tick_count = 0
        self._total_tick_time = 0.0

    def _halt(self) -> None:
        """Release the subscription and enter STOPPED with cleared bookkeeping."""
        self._unsubscribe()
        self._clear_counters()
        self._state = TimerState.STOPPED

    def _require_callable(self, callback: Any) -> None:
        if not callable(callback):
            raise InvalidCallbackError(
                f"callback must be callable, got {type(callback).__name__}"
            )

    @contextlib.contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        self._acquire(operation)
        try:
            yield
        finally:
            self._lock = None

    @contextlib.asynccontextmanager
    async def _exclusive_async(self, operation: str) -> AsyncIterator[None]:
        self._acquire(operation)
        disposals = self._disposals
        try:
            await asyncio.sleep(0)
            if self._disposals != disposals:
                raise InvalidStateError(f"Cannot {operation}: timer was disposed", self._state)
            yield
        finally:
            self._lock = None

    def _acquire(self, operation: str) -> None:
        if self._lock is not None:
            raise ConcurrentOperationError(operation, self._lock)
        self._lock = operation

    def _emit(self, name: str, *args: Any) -> None:
        hook = getattr(self._events, name, None)
        if hook is not None:
            hook(*args)

    def _report(self, error: TimerError) -> None:
        with contextlib.suppress(Exception):
            self._logger.warning("Timer operation rejected: %s", error)
        self._emit("on_error", error)

    def _log_debug(self, message: str, *args: Any) -> None:
        # Logging is observational; a broken logger must not break the timer.
        with contextlib.suppress(Exception):
            self._logger.debug(message, *args)

    def _log_error(self, message: str, error: BaseException) -> None:
        with contextlib.suppress(Exception):
            self._logger.error("%s: %s", message, error, exc_info=error)
