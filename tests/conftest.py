"""Shared fixtures: a controllable clock and an in-memory backend."""

import pytest

from pagestash.backends.memory import MemoryBackend
from pagestash.config import DAY_MS

START_MS = 1_700_000_000_000


class FakeClock:
    """Callable epoch-ms clock that only moves when told to."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1) -> int:
        self.now += ms
        return self.now

    def advance_days(self, days: float) -> int:
        return self.advance(int(days * DAY_MS))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return MemoryBackend()
