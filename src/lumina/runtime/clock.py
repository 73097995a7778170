from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int:
        """Unix seconds."""
        ...


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Deterministic clock for tests and replays. Never moves backwards."""

    def __init__(self, start: int = 1_700_000_000) -> None:
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if int(seconds) < 0:
            raise ValueError("clock cannot move backwards")
        self._now += int(seconds)
        return self._now

    def set(self, ts: int) -> int:
        if int(ts) < self._now:
            raise ValueError(f"clock cannot move backwards: {ts} < {self._now}")
        self._now = int(ts)
        return self._now


__all__ = ["Clock", "ManualClock", "SystemClock"]
