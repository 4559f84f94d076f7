"""
Process-local view of one identifier's fixed window.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple


@dataclass
class WindowState:
    """Cached {limit, remaining, reset_at} for one identifier.

    The cache is an approximation of the store. It is only trusted to
    short-circuit calls once the limit has been observed as depleted inside
    an unexpired window.
    """

    limit: int
    duration_ms: int
    remaining: int = 0
    reset_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        """True when no window was started yet or the current one has ended."""
        return self.reset_at is None or self.reset_at < now

    def is_depleted(self, now: datetime) -> bool:
        """True when the unexpired window has no tokens left."""
        return not self.is_expired(now) and self.remaining == 0

    def start(self, now: datetime) -> None:
        """Start a brand-new window at `now`."""
        self.reset_at = now + timedelta(milliseconds=self.duration_ms)
        self.remaining = self.limit

    def sync(self, remaining: int, ttl_ms: int, now: datetime) -> None:
        """Adopt the remaining count and lifetime read from the store."""
        self.remaining = remaining
        self.reset_at = now + timedelta(milliseconds=ttl_ms)

    def ttl_ms(self, now: datetime) -> int:
        """Milliseconds until the window ends, never below zero."""
        if self.reset_at is None:
            return 0
        return max(0, int((self.reset_at - now) / timedelta(milliseconds=1)))

    def snapshot(self) -> Tuple[int, Optional[datetime]]:
        return self.remaining, self.reset_at

    def restore(self, snapshot: Tuple[int, Optional[datetime]]) -> None:
        self.remaining, self.reset_at = snapshot
