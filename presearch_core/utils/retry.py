"""
Retry and backoff helpers shared by the API client and the content fetcher.
Consolidates backoff, jitter and Retry-After handling.
"""

import random
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Optional


class RetryConfig:
    """Library defaults; per-instance values come from ``core.config``."""

    BASE_DELAY = 1.0
    BACKOFF_FACTOR = 2.0
    MAX_DELAY = 10.0
    JITTER = "none"


def apply_jitter(delay: float, jitter_mode: str = "full") -> float:
    """
    Apply jitter to a delay value to prevent thundering herd.

    Args:
        delay: Base delay in seconds
        jitter_mode: "full", "equal", or "none"

    Returns:
        Jittered delay in seconds
    """
    if jitter_mode == "full":
        return random.uniform(0, delay)
    if jitter_mode == "equal":
        return delay / 2 + random.uniform(0, delay / 2)
    return delay


def parse_retry_after(retry_after: Optional[str]) -> Optional[float]:
    """
    Parse Retry-After header value (seconds or HTTP date).

    Returns:
        Delay in seconds or None if parsing fails
    """
    if not retry_after:
        return None

    value = retry_after.strip()

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    now = datetime.now(when.tzinfo)
    return max(0.0, (when - now).total_seconds())


def calculate_exponential_backoff(
    attempt: int,
    base_delay: Optional[float] = None,
    factor: Optional[float] = None,
    max_delay: Optional[float] = None,
    jitter_mode: Optional[str] = None,
) -> float:
    """
    Delay before retry number ``attempt`` (1-based): base * factor**(attempt-1),
    capped at ``max_delay``, then jittered.
    """
    base = RetryConfig.BASE_DELAY if base_delay is None else base_delay
    fac = RetryConfig.BACKOFF_FACTOR if factor is None else factor
    cap = RetryConfig.MAX_DELAY if max_delay is None else max_delay
    jitter = jitter_mode or RetryConfig.JITTER

    delay = base * (fac ** max(0, attempt - 1))
    delay = min(delay, cap)
    return apply_jitter(delay, jitter)
