"""Exponential backoff with jitter for failed reconciliation.

Example:
    >>> from prcanary.execution.retry import ExponentialBackoff
    >>>
    >>> backoff = ExponentialBackoff(base_delay=1.0, max_delay=60.0)
    >>> for attempt in range(5):
    ...     delay = backoff.next_delay(attempt)
    ...     print(f"Attempt {attempt}: wait {delay:.2f}s")
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from prcanary.core.config import CanarySettings
from prcanary.core.errors import get_retry_after


@dataclass
class ExponentialBackoff:
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) ± jitter,
    never above max_delay.

    Attributes:
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    base_delay: float = 1.0
    max_delay: float = 120.0
    multiplier: float = 2.0
    jitter_range: float = 0.25

    @classmethod
    def from_settings(cls, settings: CanarySettings) -> ExponentialBackoff:
        return cls(
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
            multiplier=settings.backoff_multiplier,
            jitter_range=settings.backoff_jitter,
        )

    def next_delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (zero-based)."""
        # Cap the exponent so large attempt counts cannot overflow.
        exponent = min(max(attempt, 0), 64)
        delay = min(self.base_delay * (self.multiplier**exponent), self.max_delay)
        if self.jitter_range:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
        return min(max(0.0, delay), self.max_delay)

    def delay_for(self, attempt: int, error: Exception | None = None) -> float:
        """Like :meth:`next_delay` but honours a server-provided retry-after."""
        delay = self.next_delay(attempt)
        hint = get_retry_after(error) if error is not None else None
        if hint is not None:
            delay = min(max(delay, hint), self.max_delay)
        return delay
