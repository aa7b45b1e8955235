"""Shared fixtures for faucet tests."""

import pytest

from faucet.app.core.store import InMemoryStore, reset_store
from faucet.app.services.claim import reset_orchestrator

from fakes import FakeClock


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset module-level singletons before and after each test."""
    reset_store()
    reset_orchestrator()
    yield
    reset_store()
    reset_orchestrator()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
