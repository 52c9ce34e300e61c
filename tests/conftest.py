"""Shared fixtures for all tests."""
import pytest

from tests.fake_server import FakeRoom
from tests.manual_scheduler import ManualScheduler


@pytest.fixture
def room() -> FakeRoom:
    """A fresh fake room: u1 (owner) and u2 seated, no hand dealt, v1."""
    return FakeRoom()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
