"""Tests for the audit stream."""

from unittest.mock import AsyncMock, patch

import pytest
import redis

from faucet.app.services import audit as audit_module
from faucet.app.services.audit import AuditLog


@pytest.fixture
def audit(store, clock):
    return AuditLog(store, "faucet:audit", maxlen=3, clock=clock)


@pytest.mark.asyncio
async def test_emit_persists_and_logs(audit):
    """Test that an event is logged as one [AUDIT] line and stored."""
    with patch.object(audit_module.logger, "info") as log_info:
        record = await audit.emit("invalid_password", request_id="req-1", ip_hash="abc", mode=None)

    assert record["event"] == "invalid_password"
    assert record["request_id"] == "req-1"
    assert record["timestamp"].endswith("Z")
    assert "mode" not in record

    log_info.assert_called_once()
    message = log_info.call_args.args[0]
    assert message.startswith("[AUDIT] ")
    assert '"ip_hash": "abc"' in message
    assert log_info.call_args.kwargs["extra"]["event"] == "invalid_password"

    assert await audit.recent(10) == [record]


@pytest.mark.asyncio
async def test_stream_is_bounded_and_newest_first(audit):
    for i in range(5):
        await audit.emit(f"event_{i}")

    events = await audit.recent(10)
    assert [e["event"] for e in events] == ["event_4", "event_3", "event_2"]


@pytest.mark.asyncio
async def test_store_failure_does_not_raise(clock):
    """Test that an unreachable store degrades to log-only auditing."""
    store = AsyncMock()
    store.append_event.side_effect = redis.ConnectionError("down")
    audit = AuditLog(store, "faucet:audit", clock=clock)

    with patch.object(audit_module.logger, "warning") as log_warning:
        record = await audit.emit("claim_success")

    assert record["event"] == "claim_success"
    log_warning.assert_called_once()
    assert "Failed to persist audit event" in log_warning.call_args.args[0]
