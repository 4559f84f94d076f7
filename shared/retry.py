"""
Retry delay policy for lock contention.
"""

import random
from typing import Tuple

BACKOFF_STRATEGIES: Tuple[str, ...] = ("fixed", "linear", "exponential")


class RetryConfig:
    """Configuration for contention retry behavior."""

    def __init__(self,
                 max_retries: int = 4,
                 base_delay: float = 0.02,
                 max_delay: float = 1.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "fixed"):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate the delay in seconds before retry number `attempt` (1-based)."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    # Apply max delay cap
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
