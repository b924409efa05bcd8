"""Rolling latency statistics shared by the pipeline components."""

from collections import deque
from typing import Deque, Dict, List


def percentile(sorted_values: List[float], fraction: float) -> float:
    """Percentile of an already sorted list, indexed by floor(n * fraction)."""
    if not sorted_values:
        return 0.0
    index = min(len(sorted_values) - 1, int(len(sorted_values) * fraction))
    return sorted_values[index]


class PerformanceTracker:
    """Keeps the most recent samples per operation and summarizes them."""

    def __init__(self, window: int = 1000):
        self.window = window
        self._samples: Dict[str, Deque[float]] = {}

    def record(self, operation: str, value: float) -> None:
        samples = self._samples.get(operation)
        if samples is None:
            samples = deque(maxlen=self.window)
            self._samples[operation] = samples
        samples.append(value)

    def summary(self, operation: str) -> Dict[str, float]:
        """Return average, p95, p99 and count for one operation."""
        values = sorted(self._samples.get(operation, ()))
        if not values:
            return {"avg": 0.0, "p95": 0.0, "p99": 0.0, "count": 0}
        return {
            "avg": sum(values) / len(values),
            "p95": percentile(values, 0.95),
            "p99": percentile(values, 0.99),
            "count": len(values),
        }

    def stats(self) -> Dict[str, Dict[str, float]]:
        return {operation: self.summary(operation) for operation in self._samples}

    def clear(self) -> None:
        self._samples.clear()
