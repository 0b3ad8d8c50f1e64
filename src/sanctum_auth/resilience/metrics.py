"""Per-operation latency and error metrics over a rolling window.

Each named operation keeps its last :data:`~sanctum_auth.constants.METRICS_WINDOW`
durations in a bounded deque; totals (count, errors) are kept for the
lifetime of the :class:`Metrics` instance.  Percentiles are computed on
read by sorting the retained window.
"""

from __future__ import annotations

import contextlib
import math
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Iterator, Optional

from sanctum_auth.constants import METRICS_WINDOW


@dataclass(frozen=True)
class OperationStats:
    """Snapshot of one operation's metrics.  Durations are in milliseconds."""

    name: str
    count: int
    errors: int
    average_ms: float
    p50_ms: float
    p95_ms: float
    p99_ms: float
    min_ms: float
    max_ms: float

    @property
    def error_rate(self) -> float:
        return self.errors / self.count if self.count else 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["error_rate"] = self.error_rate
        return data


def percentile(sorted_samples: list[float], q: float) -> float:
    """Nearest-rank percentile: element at ``floor(len * q)``, clamped to the last index."""
    if not sorted_samples:
        return 0.0
    index = min(math.floor(len(sorted_samples) * q), len(sorted_samples) - 1)
    return sorted_samples[index]


class Metrics:
    """Collects durations and failures per operation name.

    Args:
        window: Number of duration samples kept per operation.
    """

    def __init__(self, window: int = METRICS_WINDOW) -> None:
        self._window = window
        self._samples: dict[str, deque[float]] = {}
        self._counts: dict[str, int] = {}
        self._errors: dict[str, int] = {}

    def record(self, name: str, duration_ms: float, error: bool = False) -> None:
        samples = self._samples.get(name)
        if samples is None:
            samples = self._samples[name] = deque(maxlen=self._window)
        samples.append(duration_ms)
        self._counts[name] = self._counts.get(name, 0) + 1
        if error:
            self._errors[name] = self._errors.get(name, 0) + 1

    @contextlib.contextmanager
    def measure(self, name: str) -> Iterator[None]:
        """Time the enclosed block; an exception counts as an error and is re-raised."""
        start = time.perf_counter()
        try:
            yield
        except BaseException:
            self.record(name, (time.perf_counter() - start) * 1000, error=True)
            raise
        self.record(name, (time.perf_counter() - start) * 1000)

    def stats(self, name: str) -> Optional[OperationStats]:
        samples = self._samples.get(name)
        if not samples:
            return None
        ordered = sorted(samples)
        return OperationStats(
            name=name,
            count=self._counts.get(name, 0),
            errors=self._errors.get(name, 0),
            average_ms=sum(ordered) / len(ordered),
            p50_ms=percentile(ordered, 0.50),
            p95_ms=percentile(ordered, 0.95),
            p99_ms=percentile(ordered, 0.99),
            min_ms=ordered[0],
            max_ms=ordered[-1],
        )

    def all_stats(self) -> dict[str, OperationStats]:
        result: dict[str, OperationStats] = {}
        for name in self._samples:
            stats = self.stats(name)
            if stats is not None:
                result[name] = stats
        return result

    def sample_count(self, name: str) -> int:
        """Number of retained samples for *name* (at most the window size)."""
        return len(self._samples.get(name, ()))

    def reset(self) -> None:
        self._samples.clear()
        self._counts.clear()
        self._errors.clear()
