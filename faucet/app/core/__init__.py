"""Core utilities for the faucet application."""

from faucet.app.core.config import settings
from faucet.app.core.logging import get_log_context, get_logger, setup_logging
from faucet.app.core.store import (
    InMemoryStore,
    RedisStore,
    StateStore,
    get_store,
    reset_store,
)

__all__ = [
    "settings",
    "get_logger",
    "get_log_context",
    "setup_logging",
    "StateStore",
    "InMemoryStore",
    "RedisStore",
    "get_store",
    "reset_store",
]
