"""Read-only claim statistics endpoints."""

from typing import Any, Dict

from fastapi import APIRouter

from faucet.app.core.utils import ms_to_iso, now_ms
from faucet.app.services.claim import ClaimOrchestrator, get_orchestrator
from faucet.app.services.ledger import LedgerSnapshot

router = APIRouter()


def format_success_rate(snapshot: LedgerSnapshot) -> str:
    """Render the success rate as a percentage string, e.g. ``66.67%``."""
    if snapshot.total_claims == 0:
        return "0%"
    return f"{snapshot.success_rate * 100:.2f}%"


async def build_stats(orchestrator: ClaimOrchestrator, snapshot: LedgerSnapshot) -> Dict[str, Any]:
    pool = orchestrator.pool
    return {
        "totalClaims": snapshot.total_claims,
        "successfulClaims": snapshot.successful_claims,
        "failedClaims": snapshot.failed_claims,
        "claimsByNetwork": snapshot.claims_by_network,
        "claimsByMode": snapshot.claims_by_mode,
        "keyUsage": {
            f"key_{index}": count
            for index, count in sorted(snapshot.credential_usage.items())
        },
        "lastReset": ms_to_iso(snapshot.epoch_start),
        "uptime": snapshot.uptime_seconds,
        "successRate": format_success_rate(snapshot),
        "availableKeys": pool.size,
        "currentKeyIndex": await pool.cursor(),
        "storageType": pool.store.kind,
        "timestamp": ms_to_iso(now_ms()),
    }


@router.get("/api/stats")
async def get_stats() -> Dict[str, Any]:
    """Aggregate claim statistics. Does not mutate state."""
    orchestrator = get_orchestrator()
    snapshot = await orchestrator.ledger.snapshot()
    return await build_stats(orchestrator, snapshot)


@router.get("/api/stats/detailed")
async def get_detailed_stats() -> Dict[str, Any]:
    """Statistics plus top networks and per-credential balance."""
    orchestrator = get_orchestrator()
    detailed = await orchestrator.ledger.detailed_stats(pool_size=orchestrator.pool.size)
    stats = await build_stats(orchestrator, detailed["snapshot"])
    stats["topNetworks"] = detailed["top_networks"]
    stats["keyUsageArray"] = detailed["key_usage"]
    stats["isBalanced"] = detailed["is_balanced"]
    return stats
