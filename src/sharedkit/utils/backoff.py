from __future__ import annotations

import random

def exp_backoff(attempt: int, base: float) -> float:
    """base * 2**attempt, attempt counted from 0 (no jitter)."""
    return base * (2.0 ** attempt)

def additive_jitter(v: float, *, ratio: float = 0.1) -> float:
    """
    Add up to +ratio of v. ratio=0.1 -> v + [0, 0.1*v).
    """
    return v + v * ratio * random.random()

def capped(v: float, cap: float) -> float:
    return min(v, cap)
