"""
Retry classification and exponential backoff with jitter.

Delay before 0-indexed attempt ``i`` (``i >= 1``):
  - rate limited (HTTP 429): 2^(i-1) s + uniform(0, 1.0) s
  - network failure:          2^(i-1) s + uniform(0, 0.5) s
"""
from __future__ import annotations
import random
from enum import Enum

import httpx

RATE_LIMIT_STATUS = 429


class RetryReason(str, Enum):
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"


# Upper bound of the uniform jitter added to the base delay, in seconds
JITTER_S: dict[RetryReason, float] = {
    RetryReason.RATE_LIMITED: 1.0,
    RetryReason.NETWORK: 0.5,
}


def classify_response(response: httpx.Response) -> RetryReason | None:
    """Return RATE_LIMITED for a 429, None for every other status."""
    if response.status_code == RATE_LIMIT_STATUS:
        return RetryReason.RATE_LIMITED
    return None


def classify_exception(exc: BaseException) -> RetryReason | None:
    """Return NETWORK for connection errors and timeouts, None otherwise."""
    # a bad scheme never succeeds on retry
    if isinstance(exc, httpx.UnsupportedProtocol):
        return None
    # TimeoutException and NetworkError are both TransportError subclasses
    if isinstance(exc, httpx.TransportError):
        return RetryReason.NETWORK
    return None


def delay_bounds(attempt: int, reason: RetryReason) -> tuple[float, float]:
    """
    Minimum and maximum backoff before ``attempt``.

    Args:
        attempt: 0-indexed attempt about to be made, >= 1.
        reason: Why the previous attempt failed.
    """
    if attempt < 1:
        raise ValueError(f"backoff applies to attempts >= 1, got {attempt}")
    base = float(2 ** (attempt - 1))
    return base, base + JITTER_S[reason]


def backoff_delay(attempt: int, reason: RetryReason, rng: random.Random | None = None) -> float:
    """
    Seconds to wait before ``attempt``.

    Args:
        attempt: 0-indexed attempt about to be made, >= 1.
        reason: Why the previous attempt failed.
        rng: Random source for the jitter; the module RNG when omitted.
    """
    low, _ = delay_bounds(attempt, reason)
    uniform = (rng or random).uniform
    return low + uniform(0.0, JITTER_S[reason])


def should_retry(attempt: int, max_attempts: int) -> bool:
    """True when the 0-indexed ``attempt`` that just failed is not the last one."""
    return attempt < max_attempts - 1
