"""Tests for failover dispatch across the credential pool."""

import pytest

from faucet.app.services.credential_pool import CredentialPool
from faucet.app.services.failover import DispatchKind, FailoverDispatcher
from faucet.app.services.ledger import Ledger

from fakes import FakeProvider, error_result, quota_result, success_result, transport_result

KEYS = ["TEST_API_KEY:a:1", "TEST_API_KEY:b:2", "TEST_API_KEY:c:3"]
PAYLOAD = {"address": "0x" + "11" * 20, "blockchain": "ETH-SEPOLIA", "usdc": True}


def make_dispatcher(store, provider, keys=KEYS):
    pool = CredentialPool(keys, store, "faucet:credential_cursor")
    return FailoverDispatcher(pool, provider)


class TestFailoverDispatcher:
    """Tests for the dispatch state machine."""

    @pytest.mark.asyncio
    async def test_fails_over_to_third_credential(self, store):
        """Test that two exhausted credentials lead to success on the third."""
        provider = FakeProvider({KEYS[0]: quota_result(), KEYS[1]: quota_result()})
        dispatcher = make_dispatcher(store, provider)
        ledger = Ledger(store, "faucet:ledger:v1", "faucet:credential_cursor")

        result = await dispatcher.dispatch(PAYLOAD)
        await ledger.record("default", "ETH-SEPOLIA", True, result.credential_index)

        assert result.kind == DispatchKind.SUCCESS
        assert result.credential_index == 2
        assert result.attempts == 3
        assert [call[0] for call in provider.calls] == KEYS

        snapshot = await ledger.snapshot()
        assert snapshot.credential_usage == {2: 1}
        assert snapshot.successful_claims == 1

    @pytest.mark.asyncio
    async def test_all_exhausted_terminates(self, store):
        """Test that a fully exhausted pool stops after pool-size attempts."""
        keys = KEYS[:2]
        provider = FakeProvider(default=quota_result())
        dispatcher = make_dispatcher(store, provider, keys)

        result = await dispatcher.dispatch(PAYLOAD)

        assert result.kind == DispatchKind.EXHAUSTED
        assert result.attempts == 2
        assert len(provider.calls) == 2
        assert result.upstream.status_code == 429

    @pytest.mark.asyncio
    async def test_non_quota_error_is_not_retried(self, store):
        """Test that a request-shape error stops the loop immediately."""
        provider = FakeProvider({KEYS[0]: error_result(400)})
        dispatcher = make_dispatcher(store, provider)

        result = await dispatcher.dispatch(PAYLOAD)

        assert result.kind == DispatchKind.UPSTREAM_ERROR
        assert result.upstream.status_code == 400
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_transport_failure_moves_to_next_credential(self, store):
        """Test that a timeout is recorded and the next credential is tried."""
        provider = FakeProvider({KEYS[0]: transport_result()})
        dispatcher = make_dispatcher(store, provider)

        result = await dispatcher.dispatch(PAYLOAD)

        assert result.kind == DispatchKind.SUCCESS
        assert result.credential_index == 1
        assert result.transport_failures == ["Request timeout"]

    @pytest.mark.asyncio
    async def test_transport_failure_on_last_credential(self, store):
        """Test that a transport failure on the last credential ends as exhausted."""
        provider = FakeProvider(
            {KEYS[0]: quota_result(), KEYS[1]: quota_result(), KEYS[2]: transport_result()}
        )
        dispatcher = make_dispatcher(store, provider)

        result = await dispatcher.dispatch(PAYLOAD)

        assert result.kind == DispatchKind.EXHAUSTED
        assert result.ended_on_transport_error is True
        assert len(result.transport_failures) == 1

    @pytest.mark.asyncio
    async def test_rotation_continues_from_cursor(self, store):
        """Test that consecutive claims start from successive credentials."""
        provider = FakeProvider()
        dispatcher = make_dispatcher(store, provider)

        indexes = [(await dispatcher.dispatch(PAYLOAD)).credential_index for _ in range(4)]
        assert indexes == [0, 1, 2, 0]

    @pytest.mark.asyncio
    async def test_empty_pool(self, store):
        provider = FakeProvider()
        dispatcher = make_dispatcher(store, provider, [])

        result = await dispatcher.dispatch(PAYLOAD)

        assert result.kind == DispatchKind.NO_CREDENTIALS
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_success_result_carries_body(self, store):
        provider = FakeProvider(default=success_result("tx-42"))
        result = await make_dispatcher(store, provider).dispatch(PAYLOAD)
        assert result.upstream.body == {"id": "tx-42"}
