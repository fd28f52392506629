"""Shared fixtures: a simulated clock and event hooks backed by mocks."""

from __future__ import annotations

import dataclasses
from unittest.mock import MagicMock

import pytest

from cadence.core.countdown import CountdownEvents
from cadence.core.scheduler import ManualScheduler
from cadence.core.timer import TimerEvents


@pytest.fixture()
def scheduler() -> ManualScheduler:
    """Return a simulated clock starting at t=0."""
    return ManualScheduler()


@pytest.fixture()
def events() -> TimerEvents:
    """Return a ``TimerEvents`` whose every hook is a ``MagicMock``."""
    return TimerEvents(**{f.name: MagicMock(name=f.name) for f in dataclasses.fields(TimerEvents)})


@pytest.fixture()
def countdown_events() -> CountdownEvents:
    """Return a ``CountdownEvents`` whose every hook is a ``MagicMock``."""
    return CountdownEvents(
        **{f.name: MagicMock(name=f.name) for f in dataclasses.fields(CountdownEvents)}
    )
