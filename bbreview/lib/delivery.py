"""
Capped, rate-limited delivery of inline comments.

deliver() posts at most max_items items, with at most
limiter.max_concurrent posts in flight, a pacing delay before each slot is
released, and per-item retry with backoff. One item's failure never stops
the others. The returned outcomes are in input order, one per attempted
item; items beyond the cap are simply not attempted.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from bbreview.lib.retry import RetryPolicy, retry_with_backoff, is_retryable_error
from bbreview.lib.types import DeliveryOutcome, InlineItem

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ITEMS = 10
DEFAULT_CALL_TIMEOUT_SECONDS = 30.0


class RateLimiter:
    """Bounded pool of concurrent calls with a minimum delay per slot.

    The in-flight count and waiter queue are only touched by acquire() and
    release(), which run on the event loop. Waiters are served FIFO: a
    released slot is handed directly to the oldest waiter.
    """

    def __init__(self, max_concurrent: int = 3, min_delay: float = 0.1):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self.min_delay = min_delay
        self._running = 0
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def running(self) -> int:
        return self._running

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        if self._running < self.max_concurrent and not self._waiters:
            self._running += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before cancellation
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise
        # release() handed its slot over; _running already counts it

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._running -= 1

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn in a slot; hold the slot for min_delay afterwards."""
        await self.acquire()
        try:
            return await fn()
        finally:
            try:
                await asyncio.sleep(self.min_delay)
            finally:
                self.release()


@dataclass
class DeliveryOptions:
    max_items: int = DEFAULT_MAX_ITEMS
    call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT_SECONDS  # Per attempt; None disables
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    is_retryable: Callable[[BaseException], bool] = is_retryable_error


def _result_id(result: Any) -> Any:
    if isinstance(result, dict):
        return result.get("id")
    return getattr(result, "id", result)


def _error_text(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "Timed out"
    return str(error) or type(error).__name__


async def deliver(
    items: list[InlineItem],
    post: Callable[[InlineItem], Awaitable[Any]],
    limiter: Optional[RateLimiter] = None,
    options: Optional[DeliveryOptions] = None,
) -> list[DeliveryOutcome]:
    """Post the first max_items items and report an outcome for each.

    Args:
        items: Validated items, highest priority first
        post: Remote write for a single item; returns a dict with "id"
        limiter: Concurrency/pacing pool; a default one is created if None
        options: Cap, per-call timeout and retry policy

    Returns:
        One DeliveryOutcome per attempted item, in input order.
    """
    options = options or DeliveryOptions()
    limiter = limiter or RateLimiter()

    cap = max(0, min(len(items), options.max_items))
    if cap < len(items):
        logger.info(f"Capping delivery at {cap} of {len(items)} items")

    outcomes: list[Optional[DeliveryOutcome]] = [None] * cap

    async def attempt(item: InlineItem) -> Any:
        if options.call_timeout is None:
            return await post(item)
        return await asyncio.wait_for(post(item), timeout=options.call_timeout)

    async def post_with_retry(item: InlineItem) -> Any:
        return await retry_with_backoff(
            lambda: attempt(item),
            policy=options.retry,
            is_retryable=options.is_retryable,
        )

    async def deliver_one(index: int, item: InlineItem) -> None:
        try:
            result = await limiter.execute(lambda: post_with_retry(item))
        except Exception as e:
            logger.warning(f"Failed to post inline comment at {item.path}:{item.line}: {e}")
            outcomes[index] = DeliveryOutcome(path=item.path, line=item.line, error=_error_text(e))
            return
        outcomes[index] = DeliveryOutcome(path=item.path, line=item.line, id=_result_id(result))

    await asyncio.gather(*(deliver_one(i, item) for i, item in enumerate(items[:cap])))

    return [o for o in outcomes if o is not None]
