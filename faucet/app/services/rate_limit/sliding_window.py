"""Sliding-window event counter on top of the state store."""

from typing import Callable, List, Optional, Sequence, Tuple

from faucet.app.core.logging import get_logger
from faucet.app.core.store import STORE_ERRORS, StateStore
from faucet.app.core.utils import now_ms
from faucet.app.services.rate_limit.models import RateLimitResult

logger = get_logger(__name__)


def _validate(limit: int, window_ms: int) -> None:
    if window_ms <= 0:
        raise ValueError(f"window_ms must be positive, got {window_ms}")
    if limit < 0:
        raise ValueError(f"limit must not be negative, got {limit}")


class SlidingWindowCounter:
    """At most N events per trailing window, per key.

    ``check`` prunes and counts without committing; ``record`` appends the
    current timestamp and is only called once the caller decides to proceed.
    ``hit`` does both as one atomic store operation and ``hit_all`` does the
    same across several keys, recording all of them or none.

    Store failures follow the fail-open/fail-closed policy: with
    ``fail_closed`` a failed check denies, otherwise it admits and logs.
    """

    def __init__(
        self,
        store: StateStore,
        key_prefix: str = "",
        fail_closed: bool = False,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.key_prefix = key_prefix
        self.fail_closed = fail_closed
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}" if self.key_prefix else key

    @staticmethod
    def _reset_at(oldest: Optional[int], window_ms: int) -> Optional[int]:
        return None if oldest is None else oldest + window_ms

    def _handle_store_failure(
        self, error: Exception, limit: int, window_ms: int, now: int
    ) -> RateLimitResult:
        """Build the result used when the store cannot be reached.

        Args:
            error: The store exception
            limit: Policy limit
            window_ms: Policy window

        Returns:
            RateLimitResult based on the fail_closed configuration
        """
        if self.fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {type(error).__name__}. "
                "Request denied."
            )
            return RateLimitResult(
                allowed=False, limit=limit, remaining=0, reset_at=now + window_ms
            )

        logger.warning(
            f"Rate limiting fail-open triggered due to {type(error).__name__}. "
            "Request allowed without limit."
        )
        return RateLimitResult(allowed=True, limit=limit, remaining=limit)

    async def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        """Prune expired events for ``key`` and report whether one more fits."""
        _validate(limit, window_ms)
        now = self._clock()
        try:
            count, oldest = await self.store.window_check(self._key(key), window_ms, now)
        except STORE_ERRORS as e:
            return self._handle_store_failure(e, limit, window_ms, now)

        allowed = count < limit
        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=self._reset_at(oldest, window_ms),
        )

    async def record(self, key: str, window_ms: int) -> int:
        """Append an event at the current time. Returns the new event count."""
        _validate(0, window_ms)
        now = self._clock()
        try:
            return await self.store.window_record(self._key(key), now, window_ms)
        except STORE_ERRORS as e:
            if self.fail_closed:
                raise
            logger.warning(f"Failed to record rate limit event: {type(e).__name__}: {e}")
            return 0

    async def hit(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        """Check and record in one atomic step."""
        _validate(limit, window_ms)
        now = self._clock()
        try:
            appended, count, oldest = await self.store.window_hit(
                self._key(key), limit, window_ms, now
            )
        except STORE_ERRORS as e:
            return self._handle_store_failure(e, limit, window_ms, now)

        return RateLimitResult(
            allowed=appended,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=self._reset_at(oldest, window_ms),
        )

    async def hit_all(
        self, windows: Sequence[Tuple[str, int, int]]
    ) -> Tuple[Optional[int], List[RateLimitResult]]:
        """Check several ``(key, limit, window_ms)`` windows and record all of
        them in one atomic step, or none of them if any is full.

        Returns:
            (index of the first full window or None when admitted,
             one RateLimitResult per window)
        """
        for _key, limit, window_ms in windows:
            _validate(limit, window_ms)
        now = self._clock()
        try:
            failed, counts = await self.store.window_hit_all(
                [(self._key(key), limit, window_ms) for key, limit, window_ms in windows],
                now,
            )
        except STORE_ERRORS as e:
            results = [
                self._handle_store_failure(e, limit, window_ms, now)
                for _key, limit, window_ms in windows
            ]
            return (0 if self.fail_closed else None), results

        results = [
            RateLimitResult(
                allowed=failed is None,
                limit=limit,
                remaining=max(0, limit - count),
                reset_at=self._reset_at(oldest, window_ms),
            )
            for (_key, limit, window_ms), (count, oldest) in zip(windows, counts)
        ]
        return failed, results
