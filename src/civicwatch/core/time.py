"""
Epoch-millisecond clock helpers.

Persisted timestamps are integer epoch milliseconds (UTC). Services take a
`Clock` callable so tests can pin "now".
"""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]

MS_PER_HOUR = 3_600_000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
