"""
Shared fixtures for Gatekeeper tests.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import GatekeeperSettings
from service_gatekeeper.app.gatekeeper.transaction import InMemoryGatekeeper
from service_gatekeeper.app.store.memory_store import InMemoryStateStore
from fakes import FakeClock, RecordingProcessor


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryStateStore(clock=clock)


@pytest.fixture
def gatekeeper(store):
    return InMemoryGatekeeper(store)


@pytest.fixture
def processor():
    return RecordingProcessor()


@pytest.fixture
def settings():
    return GatekeeperSettings(
        store_backend="memory",
        rate_limit=100,
        rate_window_seconds=60,
        idempotency_ttl_seconds=24 * 60 * 60,
        log_level="warning",
    )
