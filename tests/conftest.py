"""Shared fixtures: stores and a controllable clock."""

import pytest

from delivery.storage import InMemoryStore
from tests.signals import SAMPLE_RATE


class FakeClock:
    """Callable clock returning epoch seconds under test control"""
    
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
    
    def __call__(self) -> float:
        return self.now
    
    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def sr():
    return SAMPLE_RATE


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def fake_clock():
    return FakeClock()
