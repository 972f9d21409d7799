"""Cost and rate budget for reasoning-backend calls.

A ``RateLimiter`` is normally shared by every review in the process; each
review gets its own ``BudgetTracker`` (cost ledger plus wall-clock budget)
pointing at that shared limiter.
"""

from __future__ import annotations

import math
import threading
import time
from typing import Callable, Optional

from ..exceptions import CostLimitExceeded, RateLimitExceeded

Clock = Callable[[], float]

# USD per 1M tokens.
MODEL_PRICING: dict[str, dict[str, float]] = {
    "claude-opus-4-20250514": {"input": 15.0, "output": 75.0},
    "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0},
    "claude-sonnet-4-5-20250929": {"input": 3.0, "output": 15.0},
    "claude-haiku-3-5-20241022": {"input": 0.25, "output": 1.25},
    "gpt-4o": {"input": 2.5, "output": 10.0},
}

DEFAULT_PRICING_MODEL = "claude-sonnet-4-20250514"


def estimate_tokens(text: str) -> int:
    """Rough token estimate at ~4 characters per token."""
    return math.ceil(len(text) / 4)


def estimate_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    pricing = MODEL_PRICING.get(model) or MODEL_PRICING[DEFAULT_PRICING_MODEL]
    return (input_tokens / 1_000_000) * pricing["input"] + (
        output_tokens / 1_000_000
    ) * pricing["output"]


class RateLimiter:
    """Fixed-window request limiter. Never blocks: a full window raises."""

    def __init__(
        self,
        limit_per_window: int,
        window_seconds: float = 60.0,
        clock: Clock = time.monotonic,
    ):
        self.limit = limit_per_window
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._window_start = clock()
        self._count = 0

    def _roll_window(self, now: float) -> None:
        if now - self._window_start >= self.window_seconds:
            self._window_start = now
            self._count = 0

    def acquire(self) -> None:
        with self._lock:
            self._roll_window(self._clock())
            if self._count >= self.limit:
                raise RateLimitExceeded(
                    f"Rate limit of {self.limit} requests per "
                    f"{self.window_seconds:g}s exceeded"
                )
            self._count += 1

    def remaining(self) -> int:
        with self._lock:
            self._roll_window(self._clock())
            return max(0, self.limit - self._count)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count


class BudgetTracker:
    """Per-review cost ledger and deadline, sharing a process-wide limiter."""

    def __init__(
        self,
        cost_limit: float = 1.0,
        rate_limiter: Optional[RateLimiter] = None,
        time_limit_seconds: Optional[float] = None,
        clock: Clock = time.monotonic,
    ):
        self.cost_limit = cost_limit
        self.rate_limiter = rate_limiter or RateLimiter(10)
        self.time_limit_seconds = time_limit_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cost = 0.0
        self._tokens = 0
        self._calls = 0
        self._started = clock()

    # -- ledger ------------------------------------------------------------

    def record_usage(self, model: str, input_tokens: int, output_tokens: int) -> float:
        """Add one call's usage to the ledger and return its cost."""
        cost = estimate_cost(input_tokens, output_tokens, model)
        with self._lock:
            self._cost += cost
            self._tokens += input_tokens + output_tokens
            self._calls += 1
        return cost

    @property
    def session_cost(self) -> float:
        with self._lock:
            return self._cost

    @property
    def tokens_used(self) -> int:
        with self._lock:
            return self._tokens

    @property
    def calls(self) -> int:
        with self._lock:
            return self._calls

    def reset(self) -> None:
        with self._lock:
            self._cost = 0.0
            self._tokens = 0
            self._calls = 0
            self._started = self._clock()

    # -- limits ------------------------------------------------------------

    def is_cost_limit_exceeded(self) -> bool:
        return self.session_cost >= self.cost_limit

    def elapsed_seconds(self) -> float:
        return self._clock() - self._started

    def is_time_limit_exceeded(self) -> bool:
        if self.time_limit_seconds is None:
            return False
        return self.elapsed_seconds() >= self.time_limit_seconds

    def exhausted_reason(self) -> Optional[str]:
        if self.is_cost_limit_exceeded():
            return "cost"
        if self.is_time_limit_exceeded():
            return "time"
        return None

    def ensure_within_budget(self) -> None:
        if self.is_cost_limit_exceeded():
            raise CostLimitExceeded(
                f"Review cost ${self.session_cost:.4f} reached the "
                f"${self.cost_limit:.2f} limit"
            )

    def acquire_slot(self) -> None:
        self.rate_limiter.acquire()
