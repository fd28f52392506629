"""Scheduling primitives that invoke a handler repeatedly at a fixed interval.

A :class:`Timer` never assumes its handler is invoked exactly on schedule;
it only relies on the contract below and recomputes elapsed time from
:meth:`Scheduler.now` deltas.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Callable, Protocol

from cadence.core.errors import InvalidStateError

logger = logging.getLogger(__name__)

Handler = Callable[[], None]


class Subscription:
    """Handle for one repeating subscription; returned by ``subscribe``."""

    __slots__ = ("interval_ms", "handler", "next_due", "active", "_seq", "_timer_handle")

    def __init__(self, interval_ms: float, handler: Handler, next_due: float, seq: int) -> None:
        self.interval_ms = interval_ms
        self.handler = handler
        self.next_due = next_due
        self.active = True
        self._seq = seq
        self._timer_handle: asyncio.TimerHandle | None = None

    def __repr__(self) -> str:
        status = "active" if self.active else "cancelled"
        return f"<Subscription every {self.interval_ms:g}ms next={self.next_due:g} {status}>"


class Scheduler(Protocol):
    """Contract for the wall-clock repeating-callback mechanism."""

    def now(self) -> float:
        """Return a monotonic timestamp in milliseconds."""
        ...

    def subscribe(self, interval_ms: float, handler: Handler) -> Subscription:
        """Invoke *handler* every *interval_ms* until the subscription is cancelled."""
        ...

    def cancel(self, subscription: Subscription) -> None:
        """Stop future invocations.  Cancelling twice is a no-op."""
        ...


class AsyncioScheduler:
    """Runs subscriptions on an asyncio event loop.

    Deadlines are anchored to the subscription start (``start + n * interval``)
    so scheduling latency does not accumulate from one tick to the next.
    The loop is resolved lazily, so ``subscribe`` must be called while a loop
    is running unless one is passed explicitly.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._seq = itertools.count()

    def now(self) -> float:
        return time.monotonic() * 1000.0

    def subscribe(self, interval_ms: float, handler: Handler) -> Subscription:
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError as exc:
                raise InvalidStateError(
                    "AsyncioScheduler needs a running event loop; call from a coroutine "
                    "or pass a ManualScheduler"
                ) from exc
        sub = Subscription(interval_ms, handler, self.now() + interval_ms, next(self._seq))
        self._arm(loop, sub)
        return sub

    def cancel(self, subscription: Subscription) -> None:
        subscription.active = False
        if subscription._timer_handle is not None:
            subscription._timer_handle.cancel()
            subscription._timer_handle = None

    # -- private helpers -----------------------------------------------------

    def _arm(self, loop: asyncio.AbstractEventLoop, sub: Subscription) -> None:
        # loop.time() is in seconds; our timestamps are monotonic milliseconds.
        delay = max(sub.next_due - self.now(), 0.0) / 1000.0
        sub._timer_handle = loop.call_at(loop.time() + delay, self._fire, loop, sub)

    def _fire(self, loop: asyncio.AbstractEventLoop, sub: Subscription) -> None:
        if not sub.active:
            return
        sub.next_due += sub.interval_ms
        try:
            sub.handler()
        except Exception:
            logger.exception("Unhandled error in scheduled handler")
        if sub.active:
            self._arm(loop, sub)


class ManualScheduler:
    """A simulated clock that only moves when :meth:`advance` is called.

    Useful for tests and for callers that want to drive timers
    deterministically.
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = float(start_ms)
        self._subscriptions: list[Subscription] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def subscribe(self, interval_ms: float, handler: Handler) -> Subscription:
        sub = Subscription(interval_ms, handler, self._now + interval_ms, next(self._seq))
        self._subscriptions.append(sub)
        return sub

    def cancel(self, subscription: Subscription) -> None:
        subscription.active = False
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def pending(self) -> int:
        """Number of live subscriptions."""
        return len(self._subscriptions)

    def advance(self, ms: float) -> None:
        """Move simulated time forward by *ms*, firing due handlers in order."""
        if ms < 0:
            raise ValueError(f"cannot advance by a negative amount: {ms}")
        target = self._now + ms
        while True:
            due = [s for s in self._subscriptions if s.active and s.next_due <= target]
            if not due:
                break
            sub = min(due, key=lambda s: (s.next_due, s._seq))
            self._now = sub.next_due
            sub.next_due += sub.interval_ms
            sub.handler()
        self._now = target
