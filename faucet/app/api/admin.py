"""Administrative endpoints (admin token required)."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request

from faucet.app.core.utils import ms_to_iso, now_ms
from faucet.app.middleware.auth import require_admin
from faucet.app.middleware.request_id import get_request_id
from faucet.app.services.claim import get_orchestrator

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


@router.get("/audit")
async def list_audit_events(
    limit: int = Query(default=50, ge=1, le=1000),
) -> Dict[str, Any]:
    """Newest audit events first."""
    events = await get_orchestrator().audit.recent(limit)
    return {"events": events, "count": len(events)}


@router.post("/reset")
async def reset_statistics(request: Request) -> Dict[str, Any]:
    """Clear every ledger counter and rewind credential rotation to the first key.

    This cannot be undone.
    """
    orchestrator = get_orchestrator()
    await orchestrator.ledger.reset()
    await orchestrator.audit.emit("ledger_reset", request_id=get_request_id(request))
    return {
        "success": True,
        "message": "Statistics reset",
        "timestamp": ms_to_iso(now_ms()),
    }
