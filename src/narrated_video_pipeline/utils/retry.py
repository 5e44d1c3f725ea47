"""
Exponential backoff for calls the provider may rate-limit.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from ..exceptions import RateLimitedError, RateLimitExhaustedError
from ..logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class BackoffPolicy:
    """Bounded exponential backoff applied only to rate-limit responses."""
    max_attempts: int = 6
    base_delay: float = 0.8
    max_delay: float = 15.0
    factor: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    @classmethod
    def from_settings(cls, settings) -> "BackoffPolicy":
        return cls(
            max_attempts=settings.rate_limit_max_attempts,
            base_delay=settings.rate_limit_base_delay,
            max_delay=settings.rate_limit_max_delay,
        )

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Wait before the attempt following ``attempt`` (1-based)."""
        delay = self.base_delay * (self.factor ** (attempt - 1))
        if retry_after:
            delay = max(delay, retry_after)
        return min(self.max_delay, delay)


def call_with_backoff(
    func: Callable[[], T],
    policy: BackoffPolicy,
    *,
    description: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``func`` and retry it while it raises RateLimitedError.

    Any other exception propagates on the first occurrence.

    Raises:
        RateLimitExhaustedError: If every allowed attempt was rate limited
    """
    last_error: Optional[RateLimitedError] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func()
        except RateLimitedError as exc:
            last_error = exc
            if attempt == policy.max_attempts:
                break
            delay = policy.delay_for(attempt, exc.retry_after)
            logger.warning(
                "Rate limited, backing off",
                call=description,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay=round(delay, 2),
            )
            sleep(delay)

    raise RateLimitExhaustedError(
        f"{description}: rate limited after {policy.max_attempts} attempts: {last_error}"
    )
