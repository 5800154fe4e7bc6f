"""Clock abstraction injected into cache components."""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Source of wall-clock time in epoch seconds."""

    def now(self) -> float:
        """Return the current time."""


class SystemClock:
    def now(self) -> float:
        return time.time()


__all__ = ["Clock", "SystemClock"]
