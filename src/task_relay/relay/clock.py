"""Time source used by submission backoff and polling loops."""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import Protocol


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def from_iso(value: str) -> datetime:
    """Parse ISO datetime and ensure timezone-aware UTC fallback."""

    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


class Clock(Protocol):
    """Wall time, elapsed time and cooperative sleep."""

    def now(self) -> datetime:
        """Current wall-clock time, timezone-aware."""

    def monotonic(self) -> float:
        """Seconds on a monotonic scale for budget accounting."""

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling flow only."""


class SystemClock:
    """Clock backed by the real time and the running event loop."""

    def now(self) -> datetime:
        return utc_now()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))
