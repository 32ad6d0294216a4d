from __future__ import annotations

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict


@dataclass
class RequestStats:
    latencies_ms: Deque[float]
    errors: int = 0
    timeouts: int = 0
    total: int = 0


@dataclass
class ReviewCounters:
    correct: int = 0
    incorrect: int = 0
    conflicts: int = 0
    interval_days: Dict[int, int] = field(default_factory=dict)


class MetricsRegistry:
    """In-memory metrics registry.

    - Per-path rolling latency window for p95 calculation
    - Error and timeout counters
    - Review outcome counters (correct/incorrect, scheduled interval histogram)
    """

    def __init__(self, window_size: int = 200) -> None:
        self._window_size = window_size
        self._lock = threading.Lock()
        self._per_path: Dict[str, RequestStats] = defaultdict(
            lambda: RequestStats(latencies_ms=deque(maxlen=self._window_size))
        )
        self._reviews = ReviewCounters()

    def record(self, path: str, latency_ms: float, *, is_error: bool = False, is_timeout: bool = False) -> None:
        with self._lock:
            stats = self._per_path[path]
            stats.latencies_ms.append(latency_ms)
            stats.total += 1
            if is_error:
                stats.errors += 1
            if is_timeout:
                stats.timeouts += 1

    def record_review(self, *, correct: bool, interval_days: int) -> None:
        with self._lock:
            if correct:
                self._reviews.correct += 1
            else:
                self._reviews.incorrect += 1
            histogram = self._reviews.interval_days
            histogram[interval_days] = histogram.get(interval_days, 0) + 1

    def record_conflict(self) -> None:
        with self._lock:
            self._reviews.conflicts += 1

    def snapshot(self) -> Dict[str, Dict[str, float | int]]:
        with self._lock:
            result: Dict[str, Dict[str, float | int]] = {}
            for path, stats in self._per_path.items():
                p95 = calculate_p95(list(stats.latencies_ms)) if stats.latencies_ms else 0.0
                result[path] = {
                    "p95_ms": round(p95, 2),
                    "count": stats.total,
                    "errors": stats.errors,
                    "timeouts": stats.timeouts,
                }
            return result

    def review_snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "correct": self._reviews.correct,
                "incorrect": self._reviews.incorrect,
                "conflicts": self._reviews.conflicts,
                # JSON のキーは文字列になるため、ここで明示的に変換しておく
                "interval_days": {
                    str(days): count
                    for days, count in sorted(self._reviews.interval_days.items())
                },
            }

    def reset(self) -> None:
        with self._lock:
            self._per_path.clear()
            self._reviews = ReviewCounters()


def calculate_p95(values: list[float]) -> float:
    if not values:
        return 0.0
    sorted_vals = sorted(values)
    k = int(0.95 * (len(sorted_vals) - 1))
    return sorted_vals[k]


registry = MetricsRegistry()
