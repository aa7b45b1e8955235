"""State store abstraction for counters, cursors and the audit stream.

Every component that keeps state across requests (limiters, the credential
pool cursor, the ledger) receives a ``StateStore`` at construction. Production
uses ``RedisStore``, whose multi-step mutations are Lua scripts and therefore
atomic across instances. ``InMemoryStore`` is the degraded fallback: it is
correct within one process only and forgets everything on restart.
"""

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import redis
import redis.asyncio as aioredis

from faucet.app.core.logging import get_logger
from faucet.app.core.redis_lua import (
    ADVANCE_CURSOR_SCRIPT,
    INCREMENT_COUNTERS_SCRIPT,
    RESET_COUNTERS_SCRIPT,
    WINDOW_CHECK_SCRIPT,
    WINDOW_HIT_ALL_SCRIPT,
    WINDOW_HIT_SCRIPT,
    WINDOW_RECORD_SCRIPT,
)
from faucet.app.core.utils import now_ms

logger = get_logger(__name__)

# Exceptions a store may raise when its backend is unreachable
STORE_ERRORS = (redis.RedisError, ConnectionError, TimeoutError, OSError)


class StateStore(ABC):
    """Abstract base class for state store backends.

    All operations are atomic with respect to other callers of the same
    backend instance.
    """

    kind: str = "abstract"

    @abstractmethod
    async def window_check(
        self, key: str, window_ms: int, now: int
    ) -> tuple[int, int | None]:
        """Prune events older than ``now - window_ms`` and count the rest.

        Returns:
            (surviving event count, timestamp of the oldest survivor or None)
        """

    @abstractmethod
    async def window_record(self, key: str, now: int, window_ms: int) -> int:
        """Append an event at ``now``. Returns the new event count."""

    @abstractmethod
    async def window_hit(
        self, key: str, limit: int, window_ms: int, now: int
    ) -> tuple[bool, int, int | None]:
        """Prune, then append only if fewer than ``limit`` events remain.

        Returns:
            (appended, event count after the call, oldest surviving timestamp)
        """

    @abstractmethod
    async def window_hit_all(
        self, windows: list[tuple[str, int, int]], now: int
    ) -> tuple[int | None, list[tuple[int, int | None]]]:
        """Prune every ``(key, limit, window_ms)`` window, then append to all
        of them only if each one has room. Nothing is appended otherwise.

        Returns:
            (index of the first full window or None when admitted,
             per-window (event count after the call, oldest surviving timestamp))
        """

    @abstractmethod
    async def advance_cursor(self, key: str, size: int) -> tuple[int, int]:
        """Advance a round-robin cursor modulo ``size``.

        Returns:
            (index consumed by this call, cursor after the call)
        """

    @abstractmethod
    async def get_cursor(self, key: str) -> int:
        """Read a cursor without advancing it (0 when never written)."""

    @abstractmethod
    async def increment_counters(
        self, key: str, fields: list[str], now: int
    ) -> int:
        """Increment each field by one as a single unit.

        Stamps ``epoch_start`` with ``now`` the first time the key is used.

        Returns:
            The ``total_claims`` counter after the update.
        """

    @abstractmethod
    async def get_counters(self, key: str) -> dict[str, int]:
        """Point-in-time copy of every counter under ``key``."""

    @abstractmethod
    async def reset_counters(self, key: str, cursor_key: str, now: int) -> None:
        """Replace the counters with a fresh epoch and rewind the cursor to 0."""

    @abstractmethod
    async def append_event(
        self, stream: str, event: dict[str, Any], maxlen: int
    ) -> None:
        """Append to a bounded event stream, dropping the oldest entries."""

    @abstractmethod
    async def recent_events(self, stream: str, count: int) -> list[dict[str, Any]]:
        """Newest-first events from a stream."""

    @abstractmethod
    async def ping(self) -> bool:
        """Check backend connectivity."""

    async def close(self) -> None:
        """Release backend resources."""


@dataclass
class _WindowEntry:
    """Chronological event timestamps for one limiter key."""

    timestamps: deque = field(default_factory=deque)
    expires_at: int | None = None

    def prune(self, cutoff: int) -> None:
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def is_expired(self, now: int) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class InMemoryStore(StateStore):
    """In-process state store guarded by a single asyncio lock.

    Note: state is not shared between processes or instances and is lost
    when the application restarts.
    """

    kind = "memory"

    def __init__(self) -> None:
        self._windows: dict[str, _WindowEntry] = {}
        self._cursors: dict[str, int] = {}
        self._counters: dict[str, dict[str, int]] = {}
        self._streams: dict[str, deque] = {}
        self._lock = asyncio.Lock()

    def _live_window(self, key: str, now: int) -> _WindowEntry | None:
        entry = self._windows.get(key)
        if entry is not None and entry.is_expired(now):
            del self._windows[key]
            return None
        return entry

    async def window_check(
        self, key: str, window_ms: int, now: int
    ) -> tuple[int, int | None]:
        async with self._lock:
            entry = self._live_window(key, now)
            if entry is None:
                return 0, None
            entry.prune(now - window_ms)
            oldest = entry.timestamps[0] if entry.timestamps else None
            return len(entry.timestamps), oldest

    async def window_record(self, key: str, now: int, window_ms: int) -> int:
        async with self._lock:
            entry = self._live_window(key, now)
            if entry is None:
                entry = self._windows[key] = _WindowEntry()
            entry.timestamps.append(now)
            entry.expires_at = now + window_ms
            return len(entry.timestamps)

    async def window_hit(
        self, key: str, limit: int, window_ms: int, now: int
    ) -> tuple[bool, int, int | None]:
        async with self._lock:
            entry = self._live_window(key, now)
            if entry is None:
                entry = self._windows[key] = _WindowEntry()
            entry.prune(now - window_ms)
            count = len(entry.timestamps)
            if count >= limit:
                oldest = entry.timestamps[0] if entry.timestamps else None
                return False, count, oldest
            entry.timestamps.append(now)
            entry.expires_at = now + window_ms
            return True, count + 1, entry.timestamps[0]

    async def window_hit_all(
        self, windows: list[tuple[str, int, int]], now: int
    ) -> tuple[int | None, list[tuple[int, int | None]]]:
        async with self._lock:
            entries = []
            failed = None
            for index, (key, limit, window_ms) in enumerate(windows):
                entry = self._live_window(key, now) or _WindowEntry()
                entry.prune(now - window_ms)
                entries.append(entry)
                if failed is None and len(entry.timestamps) >= limit:
                    failed = index

            if failed is None:
                for (key, _limit, window_ms), entry in zip(windows, entries):
                    entry.timestamps.append(now)
                    entry.expires_at = now + window_ms
                    self._windows[key] = entry

            return failed, [
                (len(e.timestamps), e.timestamps[0] if e.timestamps else None)
                for e in entries
            ]

    async def advance_cursor(self, key: str, size: int) -> tuple[int, int]:
        async with self._lock:
            current = self._cursors.get(key, 0) % size
            next_index = (current + 1) % size
            self._cursors[key] = next_index
            return current, next_index

    async def get_cursor(self, key: str) -> int:
        async with self._lock:
            return self._cursors.get(key, 0)

    async def increment_counters(
        self, key: str, fields: list[str], now: int
    ) -> int:
        async with self._lock:
            counters = self._counters.setdefault(key, {})
            counters.setdefault("epoch_start", now)
            for name in fields:
                counters[name] = counters.get(name, 0) + 1
            return counters.get("total_claims", 0)

    async def get_counters(self, key: str) -> dict[str, int]:
        async with self._lock:
            return dict(self._counters.get(key, {}))

    async def reset_counters(self, key: str, cursor_key: str, now: int) -> None:
        async with self._lock:
            self._counters[key] = {"epoch_start": now}
            self._cursors[cursor_key] = 0

    async def append_event(
        self, stream: str, event: dict[str, Any], maxlen: int
    ) -> None:
        async with self._lock:
            events = self._streams.get(stream)
            if events is None or events.maxlen != maxlen:
                events = self._streams[stream] = deque(events or (), maxlen=maxlen)
            events.append(dict(event))

    async def recent_events(self, stream: str, count: int) -> list[dict[str, Any]]:
        async with self._lock:
            events = self._streams.get(stream, deque())
            return [dict(e) for e in reversed(events)][:count]

    async def ping(self) -> bool:
        return True

    async def cleanup_expired(self, now: int | None = None) -> int:
        """Remove limiter windows whose TTL has passed.

        Returns:
            Number of entries removed.
        """
        now = now_ms() if now is None else now
        async with self._lock:
            expired = [k for k, e in self._windows.items() if e.is_expired(now)]
            for key in expired:
                del self._windows[key]
            return len(expired)


def _to_str(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class RedisStore(StateStore):
    """Redis-backed state store shared by every instance of the service.

    Example:
        >>> store = RedisStore("redis://localhost:6379/0")
        >>> await store.advance_cursor("faucet:credential_cursor", 3)
    """

    kind = "redis"

    def __init__(self, redis_url: str, redis_client: Any | None = None) -> None:
        self._redis_url = redis_url
        self._redis = redis_client

    def _get_client(self) -> Any:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    @staticmethod
    def _member(now: int) -> str:
        return f"{now}-{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _oldest(raw: Any) -> int | None:
        oldest = int(raw)
        return None if oldest < 0 else oldest

    async def window_check(
        self, key: str, window_ms: int, now: int
    ) -> tuple[int, int | None]:
        result = await self._get_client().eval(
            WINDOW_CHECK_SCRIPT, 1, key, now, window_ms
        )
        return int(result[0]), self._oldest(result[1])

    async def window_record(self, key: str, now: int, window_ms: int) -> int:
        result = await self._get_client().eval(
            WINDOW_RECORD_SCRIPT, 1, key, now, window_ms, self._member(now)
        )
        return int(result)

    async def window_hit(
        self, key: str, limit: int, window_ms: int, now: int
    ) -> tuple[bool, int, int | None]:
        result = await self._get_client().eval(
            WINDOW_HIT_SCRIPT, 1, key, now, window_ms, limit, self._member(now)
        )
        return bool(int(result[0])), int(result[1]), self._oldest(result[2])

    async def window_hit_all(
        self, windows: list[tuple[str, int, int]], now: int
    ) -> tuple[int | None, list[tuple[int, int | None]]]:
        keys = [key for key, _limit, _window in windows]
        args: list[Any] = [now, self._member(now)]
        for _key, limit, window_ms in windows:
            args.extend((window_ms, limit))
        result = await self._get_client().eval(
            WINDOW_HIT_ALL_SCRIPT, len(keys), *keys, *args
        )
        failed = int(result[0])
        counts = [
            (int(result[i]), self._oldest(result[i + 1]))
            for i in range(1, len(result), 2)
        ]
        return (None if failed < 0 else failed), counts

    async def advance_cursor(self, key: str, size: int) -> tuple[int, int]:
        result = await self._get_client().eval(ADVANCE_CURSOR_SCRIPT, 1, key, size)
        return int(result[0]), int(result[1])

    async def get_cursor(self, key: str) -> int:
        value = await self._get_client().get(key)
        return int(value) if value is not None else 0

    async def increment_counters(
        self, key: str, fields: list[str], now: int
    ) -> int:
        result = await self._get_client().eval(
            INCREMENT_COUNTERS_SCRIPT, 1, key, now, *fields
        )
        return int(result)

    async def get_counters(self, key: str) -> dict[str, int]:
        raw = await self._get_client().hgetall(key)
        return {_to_str(k): int(v) for k, v in raw.items()}

    async def reset_counters(self, key: str, cursor_key: str, now: int) -> None:
        await self._get_client().eval(
            RESET_COUNTERS_SCRIPT, 2, key, cursor_key, now
        )

    async def append_event(
        self, stream: str, event: dict[str, Any], maxlen: int
    ) -> None:
        await self._get_client().xadd(
            stream,
            {"data": json.dumps(event, default=str)},
            maxlen=maxlen,
            approximate=True,
        )

    async def recent_events(self, stream: str, count: int) -> list[dict[str, Any]]:
        entries = await self._get_client().xrevrange(stream, count=count)
        events = []
        for _entry_id, fields in entries:
            data = fields.get(b"data", fields.get("data"))
            if data is not None:
                events.append(json.loads(_to_str(data)))
        return events

    async def ping(self) -> bool:
        return bool(await self._get_client().ping())

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


# Global store instance (singleton pattern)
_store_instance: StateStore | None = None


def get_store(
    backend: str | None = None,
    redis_url: str | None = None,
    force_new: bool = False,
) -> StateStore:
    """Get or create the application's state store.

    Args:
        backend: 'memory', 'redis', or None to follow settings.redis_enabled.
        redis_url: Redis connection URL. Defaults to settings.redis_url.
        force_new: If True, create a new instance even if one exists.
    """
    global _store_instance

    if _store_instance is not None and not force_new:
        return _store_instance

    # Import settings here to avoid circular imports
    from faucet.app.core.config import settings

    use_redis = backend == "redis" or (backend is None and settings.redis_enabled)

    if use_redis:
        _store_instance = RedisStore(redis_url or settings.redis_url)
        logger.info("Using Redis state store")
    else:
        _store_instance = InMemoryStore()
        logger.warning(
            "Using in-process state store: rate limits, rotation cursor and "
            "ledger are per-process and reset on restart"
        )
    return _store_instance


def reset_store() -> None:
    """Reset the global store instance.

    This is primarily useful for testing.
    """
    global _store_instance
    _store_instance = None
