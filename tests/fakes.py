"""Test doubles shared by the faucet tests."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from faucet.app.core.store import InMemoryStore
from faucet.app.providers.base import BaseProvider, UpstreamOutcome, UpstreamResult

START_MS = 1_700_000_000_000
HOUR_MS = 3_600_000
DAY_MS = 24 * HOUR_MS


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class YieldingStore(InMemoryStore):
    """In-memory store that yields to the event loop before every window
    operation, the way a network round trip to Redis would."""

    async def window_check(self, *args):
        await asyncio.sleep(0)
        return await super().window_check(*args)

    async def window_record(self, *args):
        await asyncio.sleep(0)
        return await super().window_record(*args)

    async def window_hit(self, *args):
        await asyncio.sleep(0)
        return await super().window_hit(*args)

    async def window_hit_all(self, *args):
        await asyncio.sleep(0)
        return await super().window_hit_all(*args)


class FakeProvider(BaseProvider):
    """Provider returning scripted results per credential."""

    def __init__(
        self,
        results: Optional[Dict[str, UpstreamResult]] = None,
        default: Optional[UpstreamResult] = None,
    ):
        super().__init__("https://upstream.test")
        self.results = results or {}
        self.default = default or success_result()
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def request_drip(self, api_key: str, payload: Dict[str, Any]) -> UpstreamResult:
        self.calls.append((api_key, payload))
        return self.results.get(api_key, self.default)


def success_result(transaction_id: str = "tx-1") -> UpstreamResult:
    return UpstreamResult(
        kind=UpstreamOutcome.SUCCESS, status_code=200, body={"id": transaction_id}
    )


def quota_result() -> UpstreamResult:
    return UpstreamResult(
        kind=UpstreamOutcome.QUOTA_EXHAUSTED,
        status_code=429,
        body={"code": 429, "message": "Rate limit exceeded"},
    )


def error_result(status_code: int = 400) -> UpstreamResult:
    return UpstreamResult(
        kind=UpstreamOutcome.ERROR,
        status_code=status_code,
        body={"code": 2, "message": "Invalid address"},
    )


def transport_result(timed_out: bool = True) -> UpstreamResult:
    return UpstreamResult(
        kind=UpstreamOutcome.TRANSPORT_ERROR,
        error="Request timeout" if timed_out else "ConnectError: refused",
        timed_out=timed_out,
    )
