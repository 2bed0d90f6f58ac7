"""Clock sources. The host supplies integer Unix seconds, never decreasing."""

from __future__ import annotations

import time


class SystemClock:
    """Wall clock truncated to whole seconds."""

    def __call__(self) -> int:
        return int(time.time())


class ManualClock:
    """A clock moved explicitly, for tests and replay."""

    def __init__(self, start: int = 0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def set(self, timestamp: int) -> None:
        if timestamp < self.now:
            raise ValueError(
                f"Clock cannot move backwards: {timestamp} < {self.now}"
            )
        self.now = timestamp

    def advance(self, seconds: int) -> int:
        self.set(self.now + seconds)
        return self.now
