"""Clock contract used by the availability poller.

Why a Protocol:
- The poller only needs a monotonic reading and a way to pause.
- Tests swap in a fake clock and advance it from inside a mock transport.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Minimal time source."""

    def monotonic(self) -> float:
        """Seconds from an arbitrary, never-decreasing origin."""

        ...

    def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """`Clock` backed by the `time` module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)
