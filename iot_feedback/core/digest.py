"""Time-derived record keys."""

from __future__ import annotations

import time
from typing import Callable, Optional

Clock = Callable[[], float]


def time_digest(now: Optional[float] = None) -> str:
    """Return the record digest for ``now``: integer epoch seconds as a decimal string.

    Two writes within the same second share a digest and the later one
    overwrites the earlier.
    """

    if now is None:
        now = time.time()
    return str(int(now))
