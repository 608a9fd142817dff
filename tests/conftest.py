"""Shared fixtures for the revision engine tests."""

import pytest

from revision_engine import config as engine_config
from revision_engine.sessions import reset_session_manager


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture(autouse=True)
def default_engine_config():
    """Every test starts from the built-in thresholds."""
    engine_config.reset_config()
    reset_session_manager()
    yield
    engine_config.reset_config()
    reset_session_manager()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
