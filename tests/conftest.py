"""Shared pytest configuration and fixtures."""

import pytest

from preemptive_compaction.scheduler import (
    CompactionScheduler,
    CompactionState,
    NormalizedCompactionConfig,
    SessionRegistry,
)


class FakeClock:
    """Manually advanced clock for cooldown tests."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def default_config():
    """Scheduler config with every default applied."""
    return NormalizedCompactionConfig()


@pytest.fixture
def scheduler(default_config):
    """A CompactionScheduler using the default config."""
    return CompactionScheduler(default_config)


@pytest.fixture
def session_state():
    """A fresh, idle compaction state."""
    return CompactionState(session_id="test-session")


@pytest.fixture
def registry():
    """A SessionRegistry using the default config."""
    return SessionRegistry()


@pytest.fixture
def clock():
    """A FakeClock starting at t=1000s."""
    return FakeClock()
