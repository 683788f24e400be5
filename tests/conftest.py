"""Shared pytest fixtures for wabridge tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from helpers import FakeGateway  # noqa: E402
from wabridge.infra.store import InMemoryStore  # noqa: E402


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(autouse=True)
def _memory_store_backend(monkeypatch):
    """Keep tests off Postgres unless a test opts in explicitly."""
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setattr("wabridge.infra.store.STORE_BACKEND", "memory")
