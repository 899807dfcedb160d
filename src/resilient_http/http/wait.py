from __future__ import annotations

import time
from typing import Callable, Optional

# Longest single wait; larger requests (e.g. a bogus retry-after) are cut down to it.
MAX_WAIT_MS = 3600000


def wait(delay_ms: float, announce: Optional[Callable[[], None]] = None) -> None:
    """Block for `delay_ms` milliseconds (at most MAX_WAIT_MS), calling `announce` first if given."""
    if not delay_ms > 0:
        return
    if announce is not None:
        announce()
    time.sleep(min(delay_ms, MAX_WAIT_MS) / 1000.0)
