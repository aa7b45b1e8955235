"""API endpoints package for the faucet proxy."""

from faucet.app.api.admin import router as admin_router
from faucet.app.api.claim import router as claim_router
from faucet.app.api.stats import router as stats_router

__all__ = [
    "admin_router",
    "claim_router",
    "stats_router",
]
