"""Shared fixtures for printwatch tests."""

import pytest

from printwatch.config import Settings, configure
from printwatch.monitoring import FeedbackCounters, SessionMonitor


class FakeClock:
    """Manually advanced clock in epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, **overrides)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keep PRINTWATCH_* variables and cached settings out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("PRINTWATCH_"):
            monkeypatch.delenv(key)
    configure(None)
    yield
    configure(None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def feedback():
    return FeedbackCounters()


@pytest.fixture
def monitor(settings, feedback, clock):
    """Idle monitor with a fake clock."""
    return SessionMonitor(settings=settings, feedback=feedback, clock=clock)


@pytest.fixture
def make_monitor(feedback, clock):
    """Factory for monitors with overridden settings."""
    def factory(**overrides) -> SessionMonitor:
        return SessionMonitor(settings=make_settings(**overrides), feedback=feedback, clock=clock)
    return factory
