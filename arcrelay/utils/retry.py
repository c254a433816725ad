from __future__ import annotations

import random
import threading
import time
from typing import Callable, Optional

from ..config import RetrySettings


def compute_backoff(
    attempt: int, base: float = 1.5, jitter: float = 0.5, cap: Optional[float] = None
) -> float:
    """Compute capped exponential backoff with jitter."""
    delay = base ** attempt
    if cap is not None:
        delay = min(delay, cap)
    return delay + random.uniform(0, jitter)


class RetryPolicy:
    """Decides whether and how long to wait before the next session attempt.

    ``max_attempts=None`` retries forever.  ``sleep`` replaces the real wait,
    which lets tests run the loop without delays.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base: float = 1.5,
        cap: float = 60.0,
        jitter: float = 0.5,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.max_attempts = max_attempts
        self.base = base
        self.cap = cap
        self.jitter = jitter
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, settings: RetrySettings, sleep: Optional[Callable[[float], None]] = None
    ) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base=settings.base,
            cap=settings.cap,
            jitter=settings.jitter,
            sleep=sleep,
        )

    def should_retry(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt < self.max_attempts

    def delay(self, attempt: int) -> float:
        return compute_backoff(attempt, base=self.base, jitter=self.jitter, cap=self.cap)

    def wait(self, attempt: int, stop_event: Optional[threading.Event] = None) -> float:
        """Sleep before retry ``attempt``; returns early when ``stop_event`` is set."""
        delay = self.delay(attempt)
        if self._sleep is not None:
            self._sleep(delay)
        elif stop_event is not None:
            stop_event.wait(delay)
        else:
            time.sleep(delay)
        return delay
