"""Claim statistics ledger.

Counters live in a single store hash so one claim is recorded by one atomic
multi-field increment. Field layout::

    total_claims, successful_claims, failed_claims
    network:<BLOCKCHAIN>   mode:<own-key|default>   credential:<index>
    epoch_start            (ms timestamp of the last reset)
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from faucet.app.core.logging import get_logger
from faucet.app.core.store import StateStore
from faucet.app.core.utils import now_ms

logger = get_logger(__name__)

TOTAL_FIELD = "total_claims"
SUCCESS_FIELD = "successful_claims"
FAILED_FIELD = "failed_claims"
EPOCH_FIELD = "epoch_start"
NETWORK_PREFIX = "network:"
MODE_PREFIX = "mode:"
CREDENTIAL_PREFIX = "credential:"

DEFAULT_MODES = ("own-key", "default")
DEFAULT_BALANCE_TOLERANCE = 0.2
TOP_NETWORKS = 5


def usage_is_balanced(
    usage: Dict[int, int],
    tolerance: float = DEFAULT_BALANCE_TOLERANCE,
    pool_size: Optional[int] = None,
) -> bool:
    """Whether every credential's usage lies within ``tolerance`` of the mean.

    With ``pool_size`` the population is exactly the pool: members that were
    never used count as zero and indexes outside the pool are ignored.

    Examples:
        >>> usage_is_balanced({0: 10, 1: 9, 2: 11})
        True
        >>> usage_is_balanced({0: 10, 1: 1, 2: 10})
        False
    """
    if pool_size is not None:
        counts = [usage.get(i, 0) for i in range(pool_size)]
    else:
        counts = list(usage.values())
    if not counts:
        return True
    mean = sum(counts) / len(counts)
    return all(abs(count - mean) <= mean * tolerance for count in counts)


@dataclass
class LedgerSnapshot:
    """Point-in-time copy of the ledger counters."""
    total_claims: int = 0
    successful_claims: int = 0
    failed_claims: int = 0
    claims_by_network: Dict[str, int] = field(default_factory=dict)
    claims_by_mode: Dict[str, int] = field(default_factory=dict)
    credential_usage: Dict[int, int] = field(default_factory=dict)
    epoch_start: int = 0
    taken_at: int = 0

    @property
    def uptime_seconds(self) -> int:
        return max(0, (self.taken_at - self.epoch_start) // 1000)

    @property
    def success_rate(self) -> float:
        """Fraction of successful claims; 0.0 when nothing was recorded."""
        if self.total_claims == 0:
            return 0.0
        return self.successful_claims / self.total_claims

    def is_balanced(
        self,
        tolerance: float = DEFAULT_BALANCE_TOLERANCE,
        pool_size: Optional[int] = None,
    ) -> bool:
        return usage_is_balanced(self.credential_usage, tolerance, pool_size)

    @classmethod
    def from_counters(
        cls,
        counters: Dict[str, int],
        taken_at: int,
        modes: Sequence[str] = DEFAULT_MODES,
        default_epoch: Optional[int] = None,
    ) -> "LedgerSnapshot":
        snapshot = cls(
            total_claims=counters.get(TOTAL_FIELD, 0),
            successful_claims=counters.get(SUCCESS_FIELD, 0),
            failed_claims=counters.get(FAILED_FIELD, 0),
            claims_by_mode={mode: 0 for mode in modes},
            epoch_start=counters.get(
                EPOCH_FIELD, taken_at if default_epoch is None else default_epoch
            ),
            taken_at=taken_at,
        )
        for name, value in counters.items():
            if name.startswith(NETWORK_PREFIX):
                snapshot.claims_by_network[name[len(NETWORK_PREFIX):]] = value
            elif name.startswith(MODE_PREFIX):
                snapshot.claims_by_mode[name[len(MODE_PREFIX):]] = value
            elif name.startswith(CREDENTIAL_PREFIX):
                index = name[len(CREDENTIAL_PREFIX):]
                if index.isdigit():
                    snapshot.credential_usage[int(index)] = value
        return snapshot


class Ledger:
    """Aggregate claim counters plus the administrative reset.

    Args:
        store: State store holding the counters
        key: Store key of the counters hash
        cursor_key: Store key of the credential rotation cursor (reset with the counters)
        clock: Millisecond clock
    """

    def __init__(
        self,
        store: StateStore,
        key: str,
        cursor_key: str,
        clock: Callable[[], int] = now_ms,
        modes: Sequence[str] = DEFAULT_MODES,
    ):
        self.store = store
        self.key = key
        self.cursor_key = cursor_key
        self.modes = tuple(modes)
        self._clock = clock
        self._created_at = clock()

    async def record(
        self,
        mode: str,
        network: str,
        success: bool,
        credential_index: Optional[int] = None,
    ) -> int:
        """Count one dispatched claim. Returns the new total."""
        fields = [
            TOTAL_FIELD,
            SUCCESS_FIELD if success else FAILED_FIELD,
            f"{MODE_PREFIX}{mode}",
            f"{NETWORK_PREFIX}{network}",
        ]
        if credential_index is not None:
            fields.append(f"{CREDENTIAL_PREFIX}{credential_index}")
        return await self.store.increment_counters(self.key, fields, self._clock())

    async def snapshot(self) -> LedgerSnapshot:
        counters = await self.store.get_counters(self.key)
        return LedgerSnapshot.from_counters(
            counters, self._clock(), self.modes, default_epoch=self._created_at
        )

    async def is_balanced(
        self,
        tolerance: float = DEFAULT_BALANCE_TOLERANCE,
        pool_size: Optional[int] = None,
    ) -> bool:
        return (await self.snapshot()).is_balanced(tolerance, pool_size)

    async def detailed_stats(self, pool_size: Optional[int] = None) -> Dict[str, Any]:
        """Derived views used to spot rotation skew and hot networks."""
        snapshot = await self.snapshot()
        top_networks: List[Dict[str, Any]] = [
            {"network": name, "count": count}
            for name, count in sorted(
                snapshot.claims_by_network.items(), key=lambda item: item[1], reverse=True
            )[:TOP_NETWORKS]
        ]
        usage = dict(snapshot.credential_usage)
        if pool_size is not None:
            for index in range(pool_size):
                usage.setdefault(index, 0)
        key_usage = [
            {"key": f"key_{index}", "index": index, "count": count}
            for index, count in sorted(usage.items(), key=lambda item: item[1], reverse=True)
        ]
        return {
            "snapshot": snapshot,
            "top_networks": top_networks,
            "key_usage": key_usage,
            "is_balanced": snapshot.is_balanced(pool_size=pool_size),
        }

    async def reset(self) -> None:
        """Replace the counters with a fresh epoch and rewind rotation to 0."""
        await self.store.reset_counters(self.key, self.cursor_key, self._clock())
        logger.warning("Ledger reset: counters cleared and rotation cursor rewound")
