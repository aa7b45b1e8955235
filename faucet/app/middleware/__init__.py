"""Middleware and request dependencies for the faucet proxy."""

from faucet.app.middleware.auth import get_bearer_token, require_admin
from faucet.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "RequestIdMiddleware",
    "get_request_id",
    "get_bearer_token",
    "require_admin",
]
