"""Shared fixtures: an in-memory run ledger, the fake blog backend and its provider."""

import pytest

from src.entsync.sync import SyncStore
from src.entsync.sync.adapters.provider import clear_heartbeat_cache
from tests.sync.blog_app import FakeBackend, make_api


@pytest.fixture(autouse=True)
def reset_heartbeats():
    """Heartbeat results are cached per process; start every test clean."""
    clear_heartbeat_cache()
    yield
    clear_heartbeat_cache()


@pytest.fixture
def store():
    """SyncStore backed by an in-memory SQLite ledger."""
    store = SyncStore(command="pytest")
    yield store
    store.close()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def api(store, backend):
    """BlogApi provider talking to the fake backend."""
    provider = make_api(store, backend)
    yield provider
    provider.close()
