import anyio
import pytest

from habop.workqueue import (
    LongestDelay,
    RequestBackoff,
    TokenBucket,
    Workqueue,
)

pytestmark = pytest.mark.anyio


class NoDelay(RequestBackoff):
    def delay(self, item, min_delay=0):
        super().delay(item)
        return min_delay


async def test_items_added_before_start_are_buffered():
    queue = Workqueue()
    await queue.add('a')
    await queue.add('b')
    assert len(queue) == 0

    async with anyio.create_task_group() as tg:
        await tg.start(queue)
        assert await queue.get() == 'a'
        assert await queue.get() == 'b'
        tg.cancel_scope.cancel()


async def test_duplicates_are_collapsed():
    queue = Workqueue()
    async with anyio.create_task_group() as tg:
        await tg.start(queue)
        await queue.add('a')
        await queue.add('b')
        await queue.add('a')
        assert len(queue) == 2
        assert await queue.get() == 'a'
        assert await queue.get() == 'b'
        assert len(queue) == 0
        tg.cancel_scope.cancel()


async def test_item_is_not_handed_out_twice():
    queue = Workqueue()
    async with anyio.create_task_group() as tg:
        await tg.start(queue)
        await queue.add('a')
        assert await queue.get() == 'a'

        # Added again while being processed.
        await queue.add('a')
        assert len(queue) == 0

        with anyio.move_on_after(0.05) as scope:
            await queue.get()
        assert scope.cancelled_caught

        await queue.done('a')
        assert len(queue) == 1
        assert await queue.get() == 'a'
        await queue.done('a')
        assert len(queue) == 0
        tg.cancel_scope.cancel()


async def test_rate_limited_add_counts_requeues():
    queue = Workqueue(rate_limiter=NoDelay())
    async with anyio.create_task_group() as tg:
        await tg.start(queue)
        await queue.add_rate_limited('a')
        await queue.add_rate_limited('a')
        assert await queue.num_requeues('a') == 2
        assert await queue.get() == 'a'

        await queue.forget('a')
        assert await queue.num_requeues('a') == 0
        tg.cancel_scope.cancel()


async def test_add_after():
    queue = Workqueue()
    async with anyio.create_task_group() as tg:
        await tg.start(queue)
        await queue.add_after('a', 0.01)
        assert len(queue) == 0
        with anyio.fail_after(1):
            assert await queue.get() == 'a'
        tg.cancel_scope.cancel()


async def test_rate_limited_min_delay():
    queue = Workqueue(rate_limiter=NoDelay())
    async with anyio.create_task_group() as tg:
        await tg.start(queue)
        await queue.add_rate_limited('a', min_delay=0.05)
        assert len(queue) == 0
        with anyio.fail_after(1):
            assert await queue.get() == 'a'
        tg.cancel_scope.cancel()


async def test_rate_limited_item_is_held_back():
    queue = Workqueue(rate_limiter=NoDelay())
    async with anyio.create_task_group() as tg:
        await tg.start(queue)
        await queue.add_rate_limited('a', min_delay=0.2)
        await queue.add('a')
        await queue.add('b')
        assert len(queue) == 1
        assert await queue.get() == 'b'

        with anyio.move_on_after(0.1) as scope:
            await queue.get()
        assert scope.cancelled_caught

        with anyio.fail_after(1):
            assert await queue.get() == 'a'
        tg.cancel_scope.cancel()


async def test_rate_limited_item_is_not_requeued_on_done():
    queue = Workqueue(rate_limiter=NoDelay())
    async with anyio.create_task_group() as tg:
        await tg.start(queue)
        await queue.add('a')
        assert await queue.get() == 'a'

        # Added again while being processed, then the worker fails.
        await queue.add('a')
        await queue.add_rate_limited('a', min_delay=0.2)
        await queue.done('a')
        assert len(queue) == 0

        with anyio.move_on_after(0.1) as scope:
            await queue.get()
        assert scope.cancelled_caught

        with anyio.fail_after(1):
            assert await queue.get() == 'a'
        tg.cancel_scope.cancel()


def test_request_backoff():
    limiter = RequestBackoff(base_delay=1, max_delay=5)
    assert [limiter.delay('a') for _ in range(5)] == [1, 2, 4, 5, 5]
    assert limiter.delay('b') == 1
    assert limiter.count('a') == 5
    limiter.forget('a')
    assert limiter.count('a') == 0
    assert limiter.delay('a') == 1


def test_request_backoff_min_delay():
    limiter = RequestBackoff(base_delay=1, max_delay=5)
    assert limiter.delay('a', min_delay=3) == 3
    # Counts as a failure all the same.
    assert limiter.delay('a') == 2
    assert limiter.delay('a', min_delay=3) == 4
    assert limiter.delay('a', min_delay=30) == 30
    assert limiter.count('a') == 4


def test_longest_delay_passes_min_delay():
    limiter = LongestDelay(RequestBackoff(base_delay=1), TokenBucket())
    assert limiter.delay('a', min_delay=10) == 10
    assert limiter.count('a') == 1


def test_token_bucket():
    now = [0.0]
    limiter = TokenBucket(capacity=2, rate=1, penalty=0.5, clock=lambda: now[0])
    assert limiter.delay('a') == 0
    assert limiter.delay('b') == 0
    assert limiter.delay('c') == 0.5
    assert limiter.delay('d') == 1.0
    now[0] = 1.0
    assert limiter.delay('e') == 0


def test_longest_delay():
    limiter = LongestDelay(
        RequestBackoff(base_delay=1),
        TokenBucket(),
    )
    assert limiter.delay('a') == 1
    assert limiter.delay('a') == 2
    assert limiter.count('a') == 2
    limiter.forget('a')
    assert limiter.count('a') == 0
