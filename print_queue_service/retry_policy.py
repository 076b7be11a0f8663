"""
Backoff policy for failed print jobs.
Computes how long a failed job waits before the reconciler may requeue it.
"""
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class RetryStrategy(Enum):
    """Retry strategy types."""
    EXPONENTIAL_BACKOFF = "exponential_backoff"
    LINEAR_BACKOFF = "linear_backoff"
    FIXED_DELAY = "fixed_delay"
    IMMEDIATE = "immediate"


@dataclass
class BackoffPolicy:
    """
    Configuration for retry scheduling.

    The default mirrors the operator setting of a fixed five minute wait
    between print attempts.
    """
    strategy: RetryStrategy = RetryStrategy.FIXED_DELAY
    initial_delay: float = 300.0  # seconds
    max_delay: float = 3600.0  # 1 hour
    backoff_factor: float = 2.0
    jitter_factor: float = 0.0

    def __post_init__(self):
        """Validate configuration."""
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.backoff_factor <= 1.0:
            raise ValueError("backoff_factor must be > 1.0")
        if not 0 <= self.jitter_factor <= 1.0:
            raise ValueError("jitter_factor must be between 0 and 1")

    def delay_for(self, retry_count: int, base_delay: Optional[float] = None) -> float:
        """
        Calculate the wait in seconds after a failed attempt.

        Args:
            retry_count: Requeues the job has already had (0 for the first failure)
            base_delay: Optional override of initial_delay, e.g. an operator setting

        Returns:
            Delay in seconds, never negative
        """
        initial = base_delay if base_delay is not None else self.initial_delay
        attempt_number = retry_count + 1

        if self.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = initial * (self.backoff_factor ** (attempt_number - 1))
        elif self.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = initial * attempt_number
        elif self.strategy == RetryStrategy.FIXED_DELAY:
            delay = initial
        else:  # IMMEDIATE
            delay = 0.0

        # Apply maximum delay limit
        delay = min(delay, max(self.max_delay, initial))

        # Apply jitter
        if self.jitter_factor > 0:
            jitter_range = delay * self.jitter_factor
            delay = max(0.0, delay + random.uniform(-jitter_range, jitter_range))

        return delay

    def next_retry_at(self, now: datetime, retry_count: int, base_delay: Optional[float] = None) -> datetime:
        """Timestamp from which the reconciler may requeue the job."""
        delay = self.delay_for(retry_count, base_delay)
        logger.debug(f"Next retry scheduled in {delay:.1f}s (retry_count={retry_count})")
        return now + timedelta(seconds=delay)
