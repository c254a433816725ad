"""Per-generation throughput statistics."""

from __future__ import annotations

import time

from pydantic import BaseModel, Field

# Guards the 1/elapsed term against a zero-length interval.
MIN_ELAPSED_SECONDS = 1e-6


def rolling_average(previous: float, count: int, elapsed: float) -> float:
    """``avg' = (avg * n + 1 / elapsed) / (n + 1)``"""
    qps = 1.0 / max(elapsed, MIN_ELAPSED_SECONDS)
    return (previous * count + qps) / (count + 1)


class SessionStats(BaseModel):
    """Successful calls and average queries per second for one generation."""

    total_calls: int = 0
    average_qps: float = 0.0
    started_at: float = Field(default_factory=time.time)

    def record(self, elapsed: float) -> float:
        """Fold one successful call taking ``elapsed`` seconds into the average."""
        self.average_qps = rolling_average(self.average_qps, self.total_calls, elapsed)
        self.total_calls += 1
        return self.average_qps
