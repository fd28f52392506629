"""CLI entry point for cadence.

Uses Click to expose the ``cadence`` command group.  Each subcommand drives
a timer on an asyncio event loop until it finishes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Callable, TypeVar

import click

import cadence
from cadence.core.countdown import CountdownEvents, CountdownTimer
from cadence.core.errors import TimerError
from cadence.core.scheduler import AsyncioScheduler
from cadence.core.timer import Timer, TimerConfig, TimerEvents, TimerMetrics

T = TypeVar("T")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _run(action: Callable[[], T]) -> T:
    """Execute *action*, converting ``TimerError`` to a CLI error.

    On ``TimerError`` the message is printed to stderr and the process
    exits with code 1.
    """
    try:
        return action()
    except TimerError as exc:
        click.echo(str(exc), err=True)
        sys.exit(1)


def _completion(loop: asyncio.AbstractEventLoop) -> tuple[asyncio.Future[None], Callable[..., None]]:
    """Return a future plus a ``finish(error=None)`` procedure that settles it once."""
    done: asyncio.Future[None] = loop.create_future()

    def finish(error: BaseException | None = None) -> None:
        if done.done():
            return
        if error is not None:
            done.set_exception(error)
        else:
            done.set_result(None)

    return done, finish


async def _run_countdown(seconds: float, interval_ms: float, precision: bool) -> None:
    done, finish = _completion(asyncio.get_running_loop())
    events = CountdownEvents(
        on_tick=lambda remaining: click.echo(f"{remaining}s remaining"),
        on_complete=finish,
        on_error=finish,
    )
    countdown = CountdownTimer(
        seconds, interval_ms, events=events, precision=precision, scheduler=AsyncioScheduler()
    )
    try:
        await countdown.start_async()
        await done
    finally:
        countdown.dispose()


async def _run_ticker(
    interval_ms: float, count: int, max_duration_ms: float | None, precision: bool
) -> TimerMetrics:
    done, finish = _completion(asyncio.get_running_loop())
    ticks = 0

    def on_each_tick() -> None:
        nonlocal ticks
        ticks += 1
        if ticks >= count:
            finish()

    events = TimerEvents(
        on_tick=lambda elapsed: click.echo(f"tick {ticks}: {elapsed}s elapsed"),
        on_drift=lambda drift: click.echo(f"drift: {drift:.1f}ms", err=True),
        on_error=finish,
    )
    config = TimerConfig(
        interval_ms=interval_ms, max_duration_ms=max_duration_ms, precision=precision
    )
    timer = Timer(config, events=events, scheduler=AsyncioScheduler())
    try:
        await timer.start_async(on_each_tick)
        await done
        return timer.get_metrics()
    finally:
        timer.dispose()


@click.group(context_settings={"auto_envvar_prefix": "CADENCE"})
@click.version_option(version=cadence.__version__, prog_name="cadence")
@click.option("-v", "--verbose", is_flag=True, help="Log timer lifecycle events to stderr.")
def cli(verbose: bool) -> None:
    """cadence: interval timers and countdowns."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=_LOG_FORMAT)


@cli.command()
@click.argument("seconds", type=float)
@click.option(
    "--interval",
    "interval_ms",
    type=float,
    default=1000.0,
    show_default=True,
    help="Tick interval in milliseconds.",
)
@click.option("--precision", is_flag=True, help="Compensate for scheduling drift.")
def countdown(seconds: float, interval_ms: float, precision: bool) -> None:
    """Count down SECONDS seconds, printing the remaining time."""
    _run(lambda: asyncio.run(_run_countdown(seconds, interval_ms, precision)))
    click.echo("Countdown complete")


@cli.command()
@click.argument("interval_ms", type=float)
@click.option(
    "--count", type=click.IntRange(min=1), default=5, show_default=True, help="Ticks to run."
)
@click.option(
    "--max-duration",
    "max_duration_ms",
    type=float,
    default=None,
    help="Stop with an error once this many milliseconds have elapsed.",
)
@click.option("--precision", is_flag=True, help="Compensate for scheduling drift.")
def tick(interval_ms: float, count: int, max_duration_ms: float | None, precision: bool) -> None:
    """Tick every INTERVAL_MS milliseconds, then print the timer metrics."""
    metrics = _run(
        lambda: asyncio.run(_run_ticker(interval_ms, count, max_duration_ms, precision))
    )
    click.echo(json.dumps(metrics.to_dict()))
