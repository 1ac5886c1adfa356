"""Deterministic rate sampling."""

import math
import threading

# Guards against float error such as 0.3 * 10 == 3.0000000000000004.
_EPSILON = 1e-9


class RateSampler:
    """Keeps an evenly spaced, exact fraction of the events it sees.

    The n-th call to ``should_keep`` returns True iff
    ``floor(n * rate) > floor((n - 1) * rate)``, so after N calls exactly
    ``floor(N * rate)`` events were kept. Thread-safe.

    Args:
        rate: Fraction to keep, clamped to [0, 1].
    """

    def __init__(self, rate: float) -> None:
        self.rate = min(max(rate, 0.0), 1.0)
        self._seen = 0
        self._lock = threading.Lock()

    def should_keep(self) -> bool:
        if self.rate >= 1.0:
            return True
        if self.rate <= 0.0:
            return False
        with self._lock:
            self._seen += 1
            n = self._seen
        return math.floor(n * self.rate + _EPSILON) > math.floor(
            (n - 1) * self.rate + _EPSILON
        )
