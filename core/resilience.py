"""
Retry helpers for idempotent reads.

State-mutating calls are never routed through here.
"""
from __future__ import annotations

import random
import time
from typing import Callable, Optional, TypeVar

T = TypeVar('T')


class RetryConfig:
    """Configuration for retry logic."""

    def __init__(
        self,
        max_attempts: int = 2,
        initial_delay: float = 0.5,
        max_delay: float = 5.0,
        exponential_base: float = 2.0,
        jitter: bool = False
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt with exponential backoff."""
        delay = min(
            self.initial_delay * (self.exponential_base ** attempt),
            self.max_delay
        )
        if self.jitter:
            delay *= (0.5 + random.random())
        return delay


def is_network_error(error: Exception) -> bool:
    """Check if error is network-related."""
    error_str = str(error).lower()
    network_keywords = [
        'connection',
        'timeout',
        'timed out',
        'network',
        'unreachable',
        'refused',
        'reset',
        'broken pipe',
        'failed to connect',
        'unavailable',
        'bad gateway',
        'too many requests',
    ]
    return any(keyword in error_str for keyword in network_keywords)


def retry_call(
    func: Callable[..., T],
    *args,
    retry_config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    **kwargs
) -> T:
    """
    Call func, retrying only network errors, up to retry_config.max_attempts.

    The last error is re-raised; non-network errors are raised immediately.
    """
    config = retry_config or RetryConfig()

    for attempt in range(config.max_attempts):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not is_network_error(e) or attempt == config.max_attempts - 1:
                raise
            if on_retry:
                on_retry(attempt, e)
            time.sleep(config.get_delay(attempt))

    raise AssertionError("unreachable")
