from __future__ import annotations

import random
from typing import Iterator

def next_backoff(prev: float, cap: float) -> float:
    """Exponential backoff progression with cap (no jitter)."""
    return min(prev * 2.0, cap)

def jitter(v: float, *, ratio: float = 0.2) -> float:
    """
    Add ±ratio jitter. ratio=0.2 -> multiply by [0.8, 1.2].
    """
    lo = 1.0 - ratio
    hi = 1.0 + ratio
    return v * (lo + (hi - lo) * random.random())

def retry_delays(attempts: int, initial: float = 0.5, cap: float = 8.0) -> Iterator[float]:
    """
    Delays to sleep *between* `attempts` tries: attempts-1 values,
    0.5, 1, 2, ... capped. Zero or one attempt yields nothing.
    """
    v = initial
    for _ in range(max(0, attempts - 1)):
        yield v
        v = next_backoff(v, cap)
