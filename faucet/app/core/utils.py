"""Utility functions for the faucet application."""

import time
from datetime import datetime, timezone

from fastapi import Request


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def ms_to_iso(timestamp_ms: int | float | None) -> str | None:
    """Render a millisecond timestamp as an ISO-8601 UTC string.

    Examples:
        >>> ms_to_iso(0)
        '1970-01-01T00:00:00.000Z'
    """
    if timestamp_ms is None:
        return None
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def get_client_ip(request: Request) -> str:
    """Resolve the caller IP, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"
