"""
Pytest configuration and fixtures

The engine is pure computation: no database, no network. Every test gets
its own StreamRegistry so stream state never leaks between tests.
"""
import os
import sys
from datetime import datetime, timedelta

import pytest

# Add the parent directory to the path so we can import core / services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fixtures.telemetry_fixtures import BASE_TIME  # noqa: E402


class FrozenClock:
    """Deterministic wall clock for session summaries."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(BASE_TIME)


@pytest.fixture
def registry(clock):
    """Fresh registry per test, torn down afterwards."""
    from services.personalization.registry import StreamRegistry

    reg = StreamRegistry(clock=clock)
    yield reg
    reg.end_all()
