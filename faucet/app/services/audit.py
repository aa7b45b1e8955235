"""Audit stream of claim decisions.

Events carry hashed identifiers only. Each event is written as one
``[AUDIT]`` log line and appended to a bounded stream in the state store.
"""

import json
from typing import Any, Callable, Dict, List, Optional

from faucet.app.core.logging import get_log_context, get_logger
from faucet.app.core.store import STORE_ERRORS, StateStore
from faucet.app.core.utils import ms_to_iso, now_ms

logger = get_logger("faucet.audit")


class AuditLog:
    def __init__(
        self,
        store: StateStore,
        stream_key: str,
        maxlen: int = 1000,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.stream_key = stream_key
        self.maxlen = maxlen
        self._clock = clock

    async def emit(
        self, event: str, request_id: Optional[str] = None, **fields: Any
    ) -> Dict[str, Any]:
        """Log and persist one audit event. None-valued fields are dropped."""
        record: Dict[str, Any] = {"event": event, "timestamp": ms_to_iso(self._clock())}
        if request_id:
            record["request_id"] = request_id
        record.update({k: v for k, v in fields.items() if v is not None})

        logger.info(
            f"[AUDIT] {json.dumps(record, default=str)}",
            extra=get_log_context(request_id=request_id, event=event),
        )
        try:
            await self.store.append_event(self.stream_key, record, self.maxlen)
        except STORE_ERRORS as e:
            logger.warning(f"Failed to persist audit event {event}: {type(e).__name__}: {e}")
        return record

    async def recent(self, count: int = 50) -> List[Dict[str, Any]]:
        """Newest-first audit events."""
        return await self.store.recent_events(self.stream_key, count)
