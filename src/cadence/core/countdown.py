"""Countdown primitives composed on top of :class:`~cadence.core.timer.Timer`."""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from cadence.core.errors import InvalidConfigError, InvalidDurationError
from cadence.core.scheduler import Scheduler
from cadence.core.timer import Timer, TimerConfig, TimerEvents, TimerSnapshot, TimerState

# The wrapped timer may run this many times the nominal duration before it
# is stopped as a runaway.
_MAX_DURATION_FACTOR = 2

# Hooks the countdown passes straight through to its timer.  ``on_tick`` and
# ``on_reset`` are emitted by the countdown itself with countdown semantics.
_FORWARDED_HOOKS = ("on_start", "on_stop", "on_pause", "on_resume", "on_drift", "on_error")


@dataclass(frozen=True)
class CountdownEvents(TimerEvents):
    """Timer hooks plus ``on_complete``.

    ``on_tick`` receives the remaining whole seconds instead of the elapsed ones.
    """

    on_complete: Callable[[], Any] | None = None


def _require_positive_finite(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidDurationError(f"{name} must be a number, got {type(value).__name__}")
    if not math.isfinite(value) or value <= 0:
        raise InvalidDurationError(f"{name} must be a positive finite number, got {value!r}")
    return float(value)


class CountdownTimer:
    """Counts down from a fixed duration to zero.

    Each tick of the wrapped timer takes ``interval_ms`` off the remaining
    time and reports the remaining whole seconds (rounded up, so a partly
    elapsed final second still counts).  When nothing is left the timer is
    stopped and ``on_complete`` fires once.
    """

    def __init__(
        self,
        seconds: float,
        interval_ms: float = 1000,
        events: TimerEvents | None = None,
        auto_start: bool = False,
        precision: bool = False,
        logger: logging.Logger | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._initial_ms = _require_positive_finite("seconds", seconds) * 1000.0
        self._interval_ms = _require_positive_finite("interval_ms", interval_ms)
        if not isinstance(auto_start, bool):
            raise InvalidConfigError(
                f"auto_start must be a boolean, got {type(auto_start).__name__}"
            )
        self._remaining_ms = self._initial_ms
        self._events = events if events is not None else CountdownEvents()
        self._precision = precision
        self._logger = logger
        self._scheduler = scheduler
        self._timer = self._build_timer()

        if auto_start:
            self.start()

    def __repr__(self) -> str:
        return (
            f"<CountdownTimer {self.get_state().value} "
            f"remaining={self._remaining_ms:g}ms of {self._initial_ms:g}ms>"
        )

    @property
    def timer(self) -> Timer:
        """The wrapped timer."""
        return self._timer

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> Callable[[], None]:
        self._begin_run()
        self._timer.start(self._on_tick)
        return self.stop

    async def start_async(self) -> Callable[[], None]:
        self._begin_run()
        await self._timer.start_async(self._on_tick)
        return self.stop

    def pause(self) -> None:
        self._timer.pause()

    async def pause_async(self) -> None:
        await self._timer.pause_async()

    def resume(self) -> None:
        self._timer.resume(self._on_tick)

    async def resume_async(self) -> None:
        await self._timer.resume_async(self._on_tick)

    def stop(self) -> None:
        self._timer.stop()

    async def stop_async(self) -> None:
        await self._timer.stop_async()

    def reset(self) -> None:
        """Stop and restore the full duration."""
        self._timer.reset()
        self._remaining_ms = self._initial_ms
        self._emit("on_reset")

    async def reset_async(self) -> None:
        await self._timer.reset_async()
        self._remaining_ms = self._initial_ms
        self._emit("on_reset")

    def set_time(self, seconds: float) -> None:
        """Reset the countdown to a new duration of *seconds*."""
        initial_ms = _require_positive_finite("seconds", seconds) * 1000.0
        self._timer.reset()
        self._initial_ms = initial_ms
        self._remaining_ms = initial_ms
        self._timer = self._build_timer()

    def dispose(self) -> None:
        self._timer.dispose()

    # -- queries -------------------------------------------------------------

    def get_state(self) -> TimerState:
        return self._timer.get_state()

    def get_remaining_ms(self) -> float:
        return self._remaining_ms

    def get_remaining_seconds(self) -> int:
        return math.ceil(self._remaining_ms / 1000)

    def get_elapsed_seconds(self) -> int:
        return math.floor((self._initial_ms - self._remaining_ms) / 1000)

    def get_progress(self) -> float:
        """Fraction of the countdown already consumed, between 0 and 1."""
        return min(max(1 - self._remaining_ms / self._initial_ms, 0.0), 1.0)

    # -- snapshots -----------------------------------------------------------

    def get_snapshot(self) -> TimerSnapshot:
        return dataclasses.replace(
            self._timer.get_snapshot(),
            remaining_ms=self._remaining_ms,
            initial_ms=self._initial_ms,
        )

    def load_snapshot(self, snapshot: TimerSnapshot | Mapping[str, Any]) -> None:
        """Restore timer bookkeeping plus remaining/initial time.  Only while STOPPED."""
        if not isinstance(snapshot, TimerSnapshot):
            snapshot = TimerSnapshot.from_dict(snapshot)
        initial_ms = self._initial_ms
        if snapshot.initial_ms is not None:
            initial_ms = _require_positive_finite("initialMs", snapshot.initial_ms)
        if initial_ms != self._initial_ms and self.get_state() is TimerState.STOPPED:
            # The runaway ceiling follows the duration.
            self._initial_ms = initial_ms
            self._timer = self._build_timer()
        self._timer.load_snapshot(snapshot, callback=self._on_tick)
        if snapshot.remaining_ms is not None:
            self._remaining_ms = snapshot.remaining_ms

    # -- private helpers -----------------------------------------------------

    def _build_timer(self) -> Timer:
        forwarded = TimerEvents(
            **{name: getattr(self._events, name, None) for name in _FORWARDED_HOOKS}
        )
        config = TimerConfig(
            interval_ms=self._interval_ms,
            max_duration_ms=self._initial_ms * _MAX_DURATION_FACTOR,
            precision=self._precision,
        )
        return Timer(config, events=forwarded, logger=self._logger, scheduler=self._scheduler)

    def _begin_run(self) -> None:
        # A finished run starts over from the full duration.
        if self._timer.get_state() is TimerState.STOPPED and self._remaining_ms <= 0:
            self._remaining_ms = self._initial_ms

    def _on_tick(self) -> None:
        self._remaining_ms = max(self._remaining_ms - self._interval_ms, 0.0)
        self._emit("on_tick", self.get_remaining_seconds())
        if self._remaining_ms <= 0:
            self._timer.halt()
            self._emit("on_complete")

    def _emit(self, name: str, *args: Any) -> None:
        hook = getattr(self._events, name, None)
        if hook is not None:
            hook(*args)


class Countdown:
    """One-second countdown that starts as soon as it is created.

    Calls ``do_each_sec(remaining_seconds)`` every second and ``do_at_end()``
    once when the count reaches zero.
    """

    def __init__(
        self,
        seconds: int,
        do_each_sec: Callable[[int], Any],
        do_at_end: Callable[[], Any],
        scheduler: Scheduler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._countdown = CountdownTimer(
            seconds,
            1000,
            events=CountdownEvents(on_tick=do_each_sec, on_complete=do_at_end),
            logger=logger,
            scheduler=scheduler,
        )
        self._countdown.start()

    @property
    def seconds(self) -> int:
        """Remaining whole seconds."""
        return self._countdown.get_remaining_seconds()

    def cancel(self) -> None:
        if self._countdown.get_state() is not TimerState.STOPPED:
            self._countdown.stop()
