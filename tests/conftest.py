"""Shared fixtures."""
import pytest
from fakes import FakeClock, ManualScheduler


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)
