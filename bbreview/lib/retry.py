"""
Retry with exponential backoff for remote calls.

Only transient failures are retried: network-level errors, timeouts, and
HTTP 429/502/503/504. Everything else (auth failures, bad requests)
propagates after the first attempt.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})

# Substrings of transport error messages that indicate a transient failure
NETWORK_ERROR_MARKERS = (
    "econnreset",
    "enotfound",
    "etimedout",
    "connection reset",
    "name or service not known",
    "temporary failure in name resolution",
    "timed out",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters. Delays are in seconds."""
    max_retries: int = 3  # Retries after the first attempt
    initial_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delays(self) -> list[float]:
        """Sleep before each retry, in order."""
        result = []
        delay = self.initial_delay
        for _ in range(self.max_retries):
            result.append(delay)
            delay = min(delay * self.multiplier, self.max_delay)
        return result


def error_status(error: BaseException) -> Optional[int]:
    """Numeric HTTP status carried by an error, if any."""
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    if response is not None and isinstance(getattr(response, "status_code", None), int):
        return response.status_code
    return None


def is_retryable_error(error: BaseException) -> bool:
    """Classify an error as transient (retry) or permanent (fail now)."""
    if isinstance(error, (httpx.TransportError, ConnectionError, asyncio.TimeoutError)):
        return True

    if error_status(error) in RETRYABLE_STATUS_CODES:
        return True

    message = str(error).lower()
    return any(marker in message for marker in NETWORK_ERROR_MARKERS)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    is_retryable: Callable[[BaseException], bool] = lambda e: True,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call fn until it succeeds, a non-retryable error occurs, or attempts run out.

    Raises:
        The last error from fn.
    """
    policy = policy or RetryPolicy()
    delays = policy.delays()

    for attempt in range(policy.max_attempts):
        try:
            return await fn()
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt >= policy.max_retries:
                raise
            delay = delays[attempt]
            logger.warning(f"Attempt {attempt + 1} failed, retrying in {delay:.2f}s: {e!r}")
            await sleep(delay)

    # max_attempts is always >= 1, so the loop returns or raises
    raise RuntimeError("retry_with_backoff exhausted without a result")
