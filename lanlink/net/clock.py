"""Wall-clock source for expiry checks.

Pairing expiry is expressed in epoch milliseconds.  Components take a
``Clock`` (any zero-argument callable returning epoch ms) so tests can move
time forward without sleeping.
"""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def system_clock() -> int:
    """Return the current time in epoch milliseconds."""
    return int(time.time() * 1000)


class ManualClock:
    """A clock that only moves when told to.

    >>> clock = ManualClock(1_700_000_000_000)
    >>> clock.advance(5000)
    >>> clock()
    1700000005000
    """

    def __init__(self, now_ms: int | None = None) -> None:
        self.now_ms = system_clock() if now_ms is None else now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms
