from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], float]

# --- clock sources ---

def monotonic_s() -> float:
    """Monotonic seconds (float). Only differences are meaningful."""
    return time.monotonic()

# --- elapsed-time helpers ---

def seconds_since(ts_past: float, clock: Clock = monotonic_s) -> float:
    """Non-negative time since past (clamped at 0)."""
    return max(0.0, clock() - ts_past)

def elapsed_ms(ts_start: float, clock: Clock = monotonic_s) -> float:
    """Milliseconds elapsed since ts_start, rounded to 0.01ms."""
    return round(seconds_since(ts_start, clock) * 1000.0, 2)
