"""Shared HTTP client management for connection pooling.

This module provides a singleton-like HTTP client that is initialized
on application startup and shared by the upstream provider for optimal
connection reuse.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from faucet.app.core.config import settings


# Shared HTTP client for connection pooling
_shared_http_client: httpx.AsyncClient | None = None


def _build_timeout(total: float) -> httpx.Timeout:
    # Same bound for connect, read, write and pool.
    return httpx.Timeout(total)


def get_http_client() -> httpx.AsyncClient | None:
    """Get the shared HTTP client instance, or None outside the app lifespan."""
    return _shared_http_client


@asynccontextmanager
async def init_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Initialize and yield the shared HTTP client.

    This context manager should be used in the FastAPI lifespan:

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_client():
                yield
    """
    global _shared_http_client

    limits = httpx.Limits(
        max_connections=settings.httpx_max_connections,
        max_keepalive_connections=settings.httpx_max_keepalive_connections,
        keepalive_expiry=settings.httpx_keepalive_expiry,
    )
    _shared_http_client = httpx.AsyncClient(
        timeout=_build_timeout(settings.upstream_timeout_seconds), limits=limits
    )

    try:
        yield _shared_http_client
    finally:
        if _shared_http_client is not None:
            await _shared_http_client.aclose()
            _shared_http_client = None

