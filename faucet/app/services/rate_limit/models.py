"""Rate limiting data models.

This module contains dataclasses for limiter policies and check results.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class RateLimitResult:
    """Result of a sliding-window check.

    ``reset_at`` is the epoch-millisecond moment the window admits a new
    event; it is only known when at least one event survives in the window.
    """
    allowed: bool
    limit: int
    remaining: int
    reset_at: Optional[int] = None


@dataclass(frozen=True)
class RateLimitPolicy:
    """At most ``limit`` events per ``window_ms`` for one scope."""
    scope: str
    limit: int
    window_ms: int

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError(f"{self.scope}: window must be positive, got {self.window_ms}ms")
        if self.limit < 0:
            raise ValueError(f"{self.scope}: limit must not be negative, got {self.limit}")

    @classmethod
    def per_seconds(cls, scope: str, limit: int, window_seconds: int) -> "RateLimitPolicy":
        return cls(scope=scope, limit=limit, window_ms=window_seconds * 1000)
