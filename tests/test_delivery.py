"""Tests for bbreview.lib.delivery."""

import asyncio

import pytest

from bbreview.lib.bitbucket import BitbucketError
from bbreview.lib.delivery import DeliveryOptions, RateLimiter, deliver
from bbreview.lib.retry import RetryPolicy
from bbreview.lib.types import InlineItem

FAST_RETRY = RetryPolicy(max_retries=3, initial_delay=0, max_delay=0)


def make_items(n, path="src/app.py"):
    return [InlineItem(path=path, line=i + 1, message=f"finding {i}") for i in range(n)]


class FakePoster:
    """Instrumented post(item): tracks concurrency, attempts and failures."""

    def __init__(self, duration=0.01, failures=None, durations=None):
        self.duration = duration
        self.failures = failures or {}  # line -> list of errors, raised in order
        self.durations = durations or {}  # line -> seconds
        self.in_flight = 0
        self.peak = 0
        self.attempts: dict[int, int] = {}
        self.completed: list[int] = []

    async def __call__(self, item):
        self.attempts[item.line] = self.attempts.get(item.line, 0) + 1
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.durations.get(item.line, self.duration))
            errors = self.failures.get(item.line)
            if errors:
                raise errors.pop(0)
            self.completed.append(item.line)
            return {"id": 1000 + item.line}
        finally:
            self.in_flight -= 1


def run_deliver(items, post, max_concurrent=3, **option_overrides):
    options = DeliveryOptions(**{"retry": FAST_RETRY, **option_overrides})
    limiter = RateLimiter(max_concurrent=max_concurrent, min_delay=0)
    return asyncio.run(deliver(items, post, limiter=limiter, options=options))


class TestDeliver:
    """Tests for deliver()."""

    def test_all_succeed(self):
        post = FakePoster()
        outcomes = run_deliver(make_items(3), post)
        assert [o.to_dict() for o in outcomes] == [
            {"path": "src/app.py", "line": 1, "id": 1001},
            {"path": "src/app.py", "line": 2, "id": 1002},
            {"path": "src/app.py", "line": 3, "id": 1003},
        ]

    def test_cap_and_concurrency(self):
        post = FakePoster()
        outcomes = run_deliver(make_items(15), post, max_concurrent=3, max_items=10)
        assert len(outcomes) == 10
        assert sum(post.attempts.values()) == 10
        assert set(post.attempts) == set(range(1, 11))
        assert post.peak == 3

    def test_empty_input(self):
        post = FakePoster()
        assert run_deliver([], post) == []
        assert post.attempts == {}

    def test_zero_cap(self):
        post = FakePoster()
        assert run_deliver(make_items(4), post, max_items=0) == []
        assert post.attempts == {}

    def test_negative_cap_posts_nothing(self):
        post = FakePoster()
        assert run_deliver(make_items(3), post, max_items=-1) == []
        assert post.attempts == {}

    def test_outcomes_in_input_order(self):
        # Later items finish first
        post = FakePoster(durations={1: 0.05, 2: 0.03, 3: 0.01, 4: 0.0})
        outcomes = run_deliver(make_items(4), post, max_concurrent=4)
        assert post.completed[0] == 4
        assert [o.line for o in outcomes] == [1, 2, 3, 4]

    def test_failure_does_not_stop_others(self):
        post = FakePoster(failures={2: [BitbucketError("postInlineComment", 400, "bad path")]})
        outcomes = run_deliver(make_items(4), post)
        assert [o.succeeded for o in outcomes] == [True, False, True, True]
        assert "400" in outcomes[1].error
        assert outcomes[1].to_dict()["error"] == outcomes[1].error
        assert post.attempts[2] == 1

    def test_transient_failure_retried(self):
        post = FakePoster(failures={1: [BitbucketError("postInlineComment", 503)] * 2})
        outcomes = run_deliver(make_items(1), post)
        assert outcomes[0].succeeded
        assert outcomes[0].id == 1001
        assert post.attempts[1] == 3

    def test_persistent_503_exhausts_attempts(self):
        post = FakePoster(failures={1: [BitbucketError("postInlineComment", 503)] * 10})
        outcomes = run_deliver(make_items(2), post)
        assert not outcomes[0].succeeded
        assert outcomes[1].succeeded
        assert post.attempts[1] == 4

    def test_timeout_is_retried_then_reported(self):
        post = FakePoster(durations={1: 1.0})
        outcomes = run_deliver(
            make_items(1), post,
            call_timeout=0.01,
            retry=RetryPolicy(max_retries=1, initial_delay=0, max_delay=0),
        )
        assert outcomes[0].error == "Timed out"
        assert post.attempts[1] == 2

    def test_result_without_id(self):
        async def post(item):
            return {}

        outcomes = run_deliver(make_items(1), post)
        assert outcomes[0].succeeded
        assert outcomes[0].id is None


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            RateLimiter(max_concurrent=0)

    def test_execute_returns_result(self):
        limiter = RateLimiter(max_concurrent=1, min_delay=0)

        async def fn():
            return 42

        assert asyncio.run(limiter.execute(fn)) == 42
        assert limiter.running == 0

    def test_slot_released_on_error(self):
        limiter = RateLimiter(max_concurrent=1, min_delay=0)

        async def fn():
            raise RuntimeError("boom")

        async def main():
            with pytest.raises(RuntimeError):
                await limiter.execute(fn)
            return limiter.running

        assert asyncio.run(main()) == 0

    def test_waiters_served_fifo(self):
        limiter = RateLimiter(max_concurrent=1, min_delay=0)
        order = []

        async def waiter(name):
            await limiter.acquire()
            order.append(name)
            limiter.release()

        async def main():
            await limiter.acquire()
            tasks = []
            for name in ("a", "b", "c"):
                tasks.append(asyncio.create_task(waiter(name)))
                await asyncio.sleep(0)
            assert limiter.waiting == 3
            limiter.release()
            await asyncio.gather(*tasks)

        asyncio.run(main())
        assert order == ["a", "b", "c"]
        assert limiter.running == 0

    def test_slot_held_for_min_delay(self):
        limiter = RateLimiter(max_concurrent=1, min_delay=0.2)

        async def fn():
            return None

        async def main():
            task = asyncio.create_task(limiter.execute(fn))
            await asyncio.sleep(0.02)
            held = limiter.running
            await task
            return held

        assert asyncio.run(main()) == 1
        assert limiter.running == 0

    def test_cancelled_waiter_leaves_queue(self):
        limiter = RateLimiter(max_concurrent=1, min_delay=0)

        async def main():
            await limiter.acquire()
            task = asyncio.create_task(limiter.acquire())
            await asyncio.sleep(0)
            assert limiter.waiting == 1
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            assert limiter.waiting == 0
            limiter.release()
            return limiter.running

        assert asyncio.run(main()) == 0
