"""Upstream provider package for the faucet proxy.

This package provides:
- Base provider interface and typed results (BaseProvider, UpstreamResult)
- The Circle testnet faucet provider (CircleFaucetProvider)
"""

from faucet.app.providers.base import BaseProvider, UpstreamOutcome, UpstreamResult
from faucet.app.providers.circle import CircleFaucetProvider, create_circle_provider

__all__ = [
    # Base
    "BaseProvider",
    "UpstreamOutcome",
    "UpstreamResult",
    # Providers
    "CircleFaucetProvider",
    "create_circle_provider",
]
