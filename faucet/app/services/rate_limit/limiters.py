"""Infrastructure and quota limiters built on the sliding-window counter."""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from faucet.app.core.logging import get_logger
from faucet.app.core.security import normalize_address, rate_limit_key
from faucet.app.services.rate_limit.models import RateLimitPolicy, RateLimitResult
from faucet.app.services.rate_limit.sliding_window import SlidingWindowCounter

logger = get_logger(__name__)

INFRA_SCOPE = "infrastructure"
WALLET_SCOPE = "wallet"
IP_SCOPE = "ip"


class InfrastructureLimiter:
    """Per-IP ceiling applied to every claim request before anything else.

    Uses the atomic ``hit`` so the request is counted even when it is later
    rejected for validation or authentication reasons.
    """

    def __init__(self, counter: SlidingWindowCounter, policy: RateLimitPolicy):
        self.counter = counter
        self.policy = policy

    async def check(self, client_ip: str) -> RateLimitResult:
        key = rate_limit_key(INFRA_SCOPE, client_ip)
        return await self.counter.hit(key, self.policy.limit, self.policy.window_ms)


@dataclass
class QuotaDecision:
    """Outcome of the shared-mode quota checks.

    When denied, ``scope`` and ``result`` describe the check that failed.
    """
    allowed: bool
    scope: Optional[str] = None
    result: Optional[RateLimitResult] = None


class QuotaLimiter:
    """Shared-mode quotas: one claim per wallet+network, optionally per IP.

    Every window is checked and, only when all of them have room, recorded
    in the same atomic store operation. Concurrent claims for one wallet
    therefore admit at most ``limit`` of them, and a rejection on the IP
    quota never consumes the wallet quota.
    """

    def __init__(
        self,
        counter: SlidingWindowCounter,
        wallet_policy: RateLimitPolicy,
        ip_policy: Optional[RateLimitPolicy] = None,
    ):
        self.counter = counter
        self.wallet_policy = wallet_policy
        self.ip_policy = ip_policy

    @staticmethod
    def wallet_key(address: str, network: str) -> str:
        return rate_limit_key(WALLET_SCOPE, normalize_address(address), network)

    @staticmethod
    def ip_key(client_ip: str) -> str:
        return rate_limit_key(IP_SCOPE, client_ip)

    def _checks(
        self, address: str, network: str, client_ip: str
    ) -> List[Tuple[str, str, RateLimitPolicy]]:
        checks = [(WALLET_SCOPE, self.wallet_key(address, network), self.wallet_policy)]
        if self.ip_policy is not None:
            checks.append((IP_SCOPE, self.ip_key(client_ip), self.ip_policy))
        return checks

    async def acquire(self, address: str, network: str, client_ip: str) -> QuotaDecision:
        """Admit one claim against every quota, or record nothing."""
        checks = self._checks(address, network, client_ip)
        failed, results = await self.counter.hit_all(
            [(key, policy.limit, policy.window_ms) for _scope, key, policy in checks]
        )
        if failed is not None:
            return QuotaDecision(allowed=False, scope=checks[failed][0], result=results[failed])
        return QuotaDecision(allowed=True, scope=None, result=results[0])
