"""Shared test fixtures for fasting session tests."""

import os
import sys

# Add project root to path so tests can import fast_session, server, etc.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from unittest.mock import AsyncMock

import pytest

from fast_session import FastSession
from notifications import NotificationGateway
from tests.helpers import FakeClock, FakeSessionStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return FakeSessionStore(clock)


@pytest.fixture
def deliver():
    """Delivery callback behind the gateway; inspect its await_args_list."""
    return AsyncMock()


@pytest.fixture
def notifier(deliver):
    """Gateway with permission already granted."""
    gw = NotificationGateway(deliver=deliver)
    gw.set_permission(True)
    return gw


@pytest.fixture
def sess(store, notifier, clock):
    """Fresh, isolated FastSession."""
    return FastSession(store, notifier=notifier, clock=clock)
