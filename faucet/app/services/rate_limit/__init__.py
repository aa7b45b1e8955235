"""Rate limiting for claim requests.

Provides the sliding-window counter and the two limiters built on it:
the infrastructure limiter (every request, per IP) and the quota limiter
(shared mode only, per wallet+network and optionally per IP).
"""

from faucet.app.services.rate_limit.limiters import (
    INFRA_SCOPE,
    IP_SCOPE,
    WALLET_SCOPE,
    InfrastructureLimiter,
    QuotaDecision,
    QuotaLimiter,
)
from faucet.app.services.rate_limit.models import RateLimitPolicy, RateLimitResult
from faucet.app.services.rate_limit.sliding_window import SlidingWindowCounter

__all__ = [
    # Models
    "RateLimitPolicy",
    "RateLimitResult",
    # Counter
    "SlidingWindowCounter",
    # Limiters
    "InfrastructureLimiter",
    "QuotaLimiter",
    "QuotaDecision",
    "INFRA_SCOPE",
    "WALLET_SCOPE",
    "IP_SCOPE",
]
