import logging

import anyio
from anyio import TASK_STATUS_IGNORED
from anyio.abc import TaskStatus

from ..tasks import Task

from .limiters import LongestDelay, RequestBackoff, TokenBucket


log = logging.getLogger(__name__)


class Queue:
    """Insertion ordered set of items."""

    def __init__(self):
        self._items = {}

    def push(self, item):
        self._items[item] = None

    def pop(self):
        k = next(iter(self._items))
        del self._items[k]
        return k

    def __contains__(self, item):
        return item in self._items

    def __len__(self):
        return len(self._items)


class Workqueue(Task):
    """A queue of keys to be processed.

    * An item is only handed out to one worker at a time. If it is added
      again while it is being processed, it is queued again once the
      worker marks it as done.
    * An item that is added several times before a worker gets to it is
      only processed once.
    * An item waiting out a rate limited delay is held back: adding it
      again has no effect, it is queued once the delay has passed.
    """

    def __init__(self, rate_limiter=None):
        super().__init__()
        if rate_limiter is None:
            rate_limiter = LongestDelay(RequestBackoff(), TokenBucket())
        self._rate_limiter = rate_limiter
        self._buffer = []
        self._queue = Queue()
        self._delayed = {}
        self._processing = {}
        self._dirty = {}
        self._condition = anyio.Condition()

    def __len__(self):
        return len(self._queue)

    def __repr__(self):
        length = len(self)
        delayed = len(self._delayed)
        dirty = len(self._dirty)
        processing = len(self._processing)
        return f'<Workqueue queued: {length}, delayed: {delayed}, dirty: {dirty}, processing: {processing}>'

    async def _add(self, item):
        async with self._condition:
            if item in self._dirty:
                # Already waiting to be processed.
                return
            self._dirty[item] = None
            if item not in self._processing:
                self._queue.push(item)
                self._condition.notify()

    async def add(self, item):
        """Add marks item as needing processing."""
        if item in self._delayed:
            # The pending delayed add queues it.
            return
        if self.is_running:
            await self._add(item)
        else:
            # If the queue has not yet been started we buffer items
            # and add them during startup.
            self._buffer.append(item)

    async def get(self):
        """Get blocks until it can return an item to be processed."""
        async with self._condition:
            while len(self) == 0:
                await self._condition.wait()
            item = self._queue.pop()
            self._processing[item] = None
            del self._dirty[item]
            return item

    async def done(self, item):
        """Done marks item as done processing, and if it has been marked as dirty
        again while it was being processed, it will be re-added to the queue for
        re-processing.
        """
        async with self._condition:
            del self._processing[item]
            if item in self._delayed:
                # Held back until its delay has passed.
                self._dirty.pop(item, None)
            elif item in self._dirty:
                self._queue.push(item)
                self._condition.notify()

    async def _add_after(self, item, delay):
        try:
            await anyio.sleep(delay)
        finally:
            self._delayed.pop(item, None)
        await self.add(item)

    async def add_after(self, item, delay):
        if delay <= 0:
            await self.add(item)
        else:
            self._delayed[item] = delay
            self._task_group.start_soon(self._add_after, item, delay)

    async def add_rate_limited(self, item, min_delay=0):
        """Add the item once the rate limiter allows it, but not before
        `min_delay` seconds."""
        delay = self._rate_limiter.delay(item, min_delay=min_delay)
        log.debug('adding %r after %s seconds', item, delay)
        await self.add_after(item, delay)

    async def forget(self, item):
        """Stop tracking failures of the given item."""
        self._rate_limiter.forget(item)

    async def num_requeues(self, item):
        return self._rate_limiter.count(item)

    async def __call__(self, task_status: TaskStatus[None] = TASK_STATUS_IGNORED):
        async with anyio.create_task_group() as tg:
            self._task_group = tg

            # Add any buffered items.
            self._running.set()
            while self._buffer:
                await self._add(self._buffer.pop(0))

            task_status.started()
            await self._stop.wait()
