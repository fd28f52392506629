"""Tests for CountdownTimer and the legacy Countdown wrapper."""

from __future__ import annotations

import asyncio
import math
from unittest.mock import MagicMock, call

import pytest

from cadence.core.countdown import Countdown, CountdownEvents, CountdownTimer
from cadence.core.errors import InvalidConfigError, InvalidDurationError, InvalidStateError
from cadence.core.scheduler import ManualScheduler
from cadence.core.timer import TimerSnapshot, TimerState


def _make_countdown(
    scheduler: ManualScheduler,
    events: CountdownEvents | None = None,
    seconds: float = 5,
    interval_ms: float = 1000,
    **kwargs: object,
) -> CountdownTimer:
    return CountdownTimer(
        seconds, interval_ms, events=events, scheduler=scheduler, **kwargs  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestCountdownConstruction:
    """A new countdown holds its full duration and is STOPPED."""

    def test_initial_state(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler)
        assert countdown.get_remaining_seconds() == 5
        assert countdown.get_elapsed_seconds() == 0
        assert countdown.get_progress() == 0
        assert countdown.get_state() == TimerState.STOPPED

    @pytest.mark.parametrize("seconds", [0, -1, math.inf, math.nan, "5"])
    def test_invalid_seconds_raise(self, scheduler: ManualScheduler, seconds: object) -> None:
        with pytest.raises(InvalidDurationError):
            _make_countdown(scheduler, seconds=seconds)  # type: ignore[arg-type]

    @pytest.mark.parametrize("interval", [0, -1000, math.inf, math.nan])
    def test_invalid_interval_raises(self, scheduler: ManualScheduler, interval: float) -> None:
        with pytest.raises(InvalidDurationError):
            _make_countdown(scheduler, interval_ms=interval)

    def test_duration_error_is_a_config_error(self, scheduler: ManualScheduler) -> None:
        with pytest.raises(InvalidConfigError):
            _make_countdown(scheduler, seconds=0)

    def test_auto_start(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler, auto_start=True)
        assert countdown.get_state() == TimerState.RUNNING

    def test_runaway_ceiling_is_twice_the_duration(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler, seconds=5)
        assert countdown.timer.config.max_duration_ms == 10_000


# ---------------------------------------------------------------------------
# Counting down
# ---------------------------------------------------------------------------


class TestCountdownRun:
    """Ticks consume the remaining time until completion."""

    def test_counts_down_to_zero(
        self, scheduler: ManualScheduler, countdown_events: CountdownEvents
    ) -> None:
        countdown = _make_countdown(scheduler, countdown_events)
        countdown.start()
        scheduler.advance(5000)

        assert countdown.get_remaining_seconds() == 0
        assert countdown.get_state() == TimerState.STOPPED
        countdown_events.on_complete.assert_called_once_with()
        assert countdown_events.on_tick.call_args_list == [
            call(4),
            call(3),
            call(2),
            call(1),
            call(0),
        ]

    def test_no_ticks_after_completion(
        self, scheduler: ManualScheduler, countdown_events: CountdownEvents
    ) -> None:
        countdown = _make_countdown(scheduler, countdown_events)
        countdown.start()
        scheduler.advance(20_000)
        assert countdown_events.on_tick.call_count == 5
        countdown_events.on_complete.assert_called_once_with()
        countdown_events.on_error.assert_not_called()
        assert scheduler.pending == 0

    def test_lifecycle_hooks_are_forwarded(
        self, scheduler: ManualScheduler, countdown_events: CountdownEvents
    ) -> None:
        countdown = _make_countdown(scheduler, countdown_events)
        countdown.start()
        countdown.pause()
        countdown.resume()
        scheduler.advance(5000)
        countdown_events.on_start.assert_called_once_with()
        countdown_events.on_pause.assert_called_once_with()
        countdown_events.on_resume.assert_called_once_with()
        countdown_events.on_stop.assert_called_once_with()

    def test_tracks_progress(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler)
        progress = [countdown.get_progress()]
        countdown.start()
        for _ in range(6):
            scheduler.advance(1000)
            progress.append(countdown.get_progress())

        assert progress[0] == 0
        assert progress[2] == pytest.approx(0.4)
        assert progress[5] == 1
        assert progress[6] == 1
        assert progress == sorted(progress)

    def test_elapsed_seconds_are_floored(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler, interval_ms=500)
        countdown.start()
        scheduler.advance(2500)
        assert countdown.get_elapsed_seconds() == 2
        assert countdown.get_remaining_seconds() == 3

    def test_interval_not_dividing_duration(
        self, scheduler: ManualScheduler, countdown_events: CountdownEvents
    ) -> None:
        countdown = _make_countdown(scheduler, countdown_events, seconds=1, interval_ms=300)
        countdown.start()
        scheduler.advance(1200)
        assert countdown_events.on_tick.call_args_list == [call(1), call(1), call(1), call(0)]
        assert countdown.get_remaining_ms() == 0
        assert countdown.get_progress() == 1
        countdown_events.on_complete.assert_called_once_with()

    def test_restart_after_completion_uses_full_duration(
        self, scheduler: ManualScheduler
    ) -> None:
        countdown = _make_countdown(scheduler)
        countdown.start()
        scheduler.advance(5000)
        countdown.start()
        scheduler.advance(1000)
        assert countdown.get_remaining_seconds() == 4

    def test_start_twice_raises(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler)
        countdown.start()
        with pytest.raises(InvalidStateError, match="Cannot start: timer is RUNNING"):
            countdown.start()

    def test_async_start(
        self, scheduler: ManualScheduler, countdown_events: CountdownEvents
    ) -> None:
        countdown = _make_countdown(scheduler, countdown_events)
        asyncio.run(countdown.start_async())
        scheduler.advance(5000)
        countdown_events.on_complete.assert_called_once_with()

    def test_completes_while_async_operation_pending(
        self, scheduler: ManualScheduler, countdown_events: CountdownEvents
    ) -> None:
        """Completion inside a tick does not collide with a held operation lock."""
        countdown = _make_countdown(scheduler, countdown_events, seconds=2)
        countdown.start()

        async def scenario() -> None:
            task = asyncio.create_task(countdown.timer.set_interval_async(1000))
            await asyncio.sleep(0)
            scheduler.advance(2000)
            await task

        asyncio.run(scenario())
        countdown_events.on_complete.assert_called_once_with()
        countdown_events.on_stop.assert_called_once_with()
        countdown_events.on_error.assert_not_called()
        assert countdown.get_state() == TimerState.STOPPED
        assert countdown.get_remaining_seconds() == 0
        assert scheduler.pending == 0


# ---------------------------------------------------------------------------
# pause() / resume() / stop() / reset() / set_time()
# ---------------------------------------------------------------------------


class TestCountdownControl:
    """Lifecycle operations delegate to the wrapped timer."""

    def test_pause_and_resume(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler)
        countdown.start()
        scheduler.advance(2000)
        countdown.pause()
        assert countdown.get_remaining_seconds() == 3
        scheduler.advance(2000)
        assert countdown.get_remaining_seconds() == 3
        countdown.resume()
        scheduler.advance(3000)
        assert countdown.get_remaining_seconds() == 0
        assert countdown.get_state() == TimerState.STOPPED

    def test_async_pause_and_resume(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler)
        countdown.start()
        scheduler.advance(1000)
        asyncio.run(countdown.pause_async())
        assert countdown.get_state() == TimerState.PAUSED
        asyncio.run(countdown.resume_async())
        scheduler.advance(1000)
        assert countdown.get_remaining_seconds() == 3
        asyncio.run(countdown.stop_async())
        assert countdown.get_state() == TimerState.STOPPED

    def test_stop_keeps_remaining(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler)
        countdown.start()
        scheduler.advance(2000)
        countdown.stop()
        assert countdown.get_state() == TimerState.STOPPED
        assert countdown.get_remaining_seconds() == 3

    def test_reset(self, scheduler: ManualScheduler, countdown_events: CountdownEvents) -> None:
        countdown = _make_countdown(scheduler, countdown_events)
        countdown.start()
        scheduler.advance(2000)
        countdown.reset()
        countdown_events.on_reset.assert_called_once_with()
        assert countdown.get_remaining_seconds() == 5
        assert countdown.get_state() == TimerState.STOPPED

    def test_async_reset(
        self, scheduler: ManualScheduler, countdown_events: CountdownEvents
    ) -> None:
        countdown = _make_countdown(scheduler, countdown_events)
        countdown.start()
        scheduler.advance(2000)
        asyncio.run(countdown.reset_async())
        countdown_events.on_reset.assert_called_once_with()
        assert countdown.get_remaining_seconds() == 5

    def test_set_time_while_running(
        self, scheduler: ManualScheduler, countdown_events: CountdownEvents
    ) -> None:
        countdown = _make_countdown(scheduler, countdown_events)
        countdown.start()
        scheduler.advance(2000)
        countdown.set_time(12)
        assert countdown.get_state() == TimerState.STOPPED
        assert countdown.get_remaining_seconds() == 12
        assert countdown.timer.config.max_duration_ms == 24_000

        countdown.start()
        scheduler.advance(12_000)
        countdown_events.on_complete.assert_called_once_with()
        countdown_events.on_error.assert_not_called()

    @pytest.mark.parametrize("seconds", [0, -3, math.nan])
    def test_set_time_rejects_invalid(self, scheduler: ManualScheduler, seconds: float) -> None:
        countdown = _make_countdown(scheduler)
        with pytest.raises(InvalidDurationError):
            countdown.set_time(seconds)
        assert countdown.get_remaining_seconds() == 5

    def test_dispose_is_idempotent(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler)
        countdown.start()
        countdown.dispose()
        countdown.dispose()
        assert countdown.get_state() == TimerState.STOPPED
        assert scheduler.pending == 0


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class TestCountdownSnapshot:
    """Countdown snapshots carry remaining and initial time."""

    def test_snapshot_fields(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler)
        countdown.start()
        scheduler.advance(2000)
        assert countdown.get_snapshot().to_dict() == {
            "state": "RUNNING",
            "elapsedMs": 2000.0,
            "remainingMs": 3000.0,
            "initialMs": 5000.0,
        }

    def test_snapshot_round_trip(
        self, scheduler: ManualScheduler, countdown_events: CountdownEvents
    ) -> None:
        countdown = _make_countdown(scheduler, countdown_events)
        countdown.start()
        scheduler.advance(2000)
        snapshot = countdown.get_snapshot()
        countdown.stop()
        countdown.load_snapshot(snapshot)

        assert countdown.get_state() == TimerState.RUNNING
        assert countdown.get_remaining_seconds() == 3
        scheduler.advance(3000)
        countdown_events.on_complete.assert_called_once_with()

    def test_load_into_fresh_countdown(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler, seconds=5)
        countdown.load_snapshot(
            {"state": "PAUSED", "elapsedMs": 6000, "remainingMs": 2000, "initialMs": 8000}
        )
        assert countdown.get_state() == TimerState.PAUSED
        assert countdown.get_remaining_seconds() == 2
        assert countdown.get_elapsed_seconds() == 6
        assert countdown.get_progress() == pytest.approx(0.75)
        assert countdown.timer.config.max_duration_ms == 16_000

        countdown.resume()
        scheduler.advance(2000)
        assert countdown.get_remaining_seconds() == 0
        assert countdown.get_state() == TimerState.STOPPED

    def test_load_while_running_raises(self, scheduler: ManualScheduler) -> None:
        countdown = _make_countdown(scheduler)
        countdown.start()
        with pytest.raises(InvalidStateError):
            countdown.load_snapshot(
                TimerSnapshot(state=TimerState.STOPPED, elapsed_ms=0, remaining_ms=1000)
            )
        assert countdown.get_remaining_seconds() == 5


# ---------------------------------------------------------------------------
# Legacy Countdown
# ---------------------------------------------------------------------------


class TestLegacyCountdown:
    """Countdown starts immediately and ticks once per second."""

    def test_runs_to_completion(self, scheduler: ManualScheduler) -> None:
        do_each_sec = MagicMock()
        do_at_end = MagicMock()
        countdown = Countdown(30, do_each_sec, do_at_end, scheduler=scheduler)
        assert countdown.seconds == 30

        scheduler.advance(10_000)
        assert do_each_sec.call_count == 10
        assert countdown.seconds == 20

        scheduler.advance(20_000)
        assert do_each_sec.call_count == 30
        do_at_end.assert_called_once_with()

        scheduler.advance(1000)
        assert do_each_sec.call_count == 30
        assert countdown.seconds == 0

    def test_cancel(self, scheduler: ManualScheduler) -> None:
        do_each_sec = MagicMock()
        countdown = Countdown(10, do_each_sec, MagicMock(), scheduler=scheduler)
        scheduler.advance(3000)
        countdown.cancel()
        countdown.cancel()
        scheduler.advance(10_000)
        assert do_each_sec.call_count == 3
        assert countdown.seconds == 7
