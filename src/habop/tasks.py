import asyncio
import functools

import anyio
from anyio import TASK_STATUS_IGNORED
from anyio.abc import TaskStatus


def is_async_fn(fn) -> bool:
    if fn is None:
        return False
    elif isinstance(fn, functools.partial):
        return is_async_fn(fn.func)
    elif hasattr(fn, '__wrapped__'):  # @functools.wraps()
        return is_async_fn(fn.__wrapped__)
    else:
        return asyncio.iscoroutinefunction(fn)


def nonblocking(func):
    """Decorator that marks a sync function as safe to call from the
    event loop, so `invoke` does not push it to a worker thread."""
    func.__nonblocking__ = True
    return func


async def invoke(func, *args, **kwargs):
    """Call a sync or async callable and return its result."""
    if is_async_fn(func):
        return await func(*args, **kwargs)
    if hasattr(func, '__nonblocking__'):
        return func(*args, **kwargs)
    return await anyio.to_thread.run_sync(
        functools.partial(func, *args, **kwargs)
    )


class Task:
    """A long running component that can be awaited independent of the
    TaskGroup it runs in. Awaiting a task blocks until it is ready."""

    def __init__(self):
        self._task_group = None
        self._running = anyio.Event()
        self._stop = anyio.Event()

    def reset_task(self):
        # anyio events can not be re-used.
        self._running = anyio.Event()
        self._stop = anyio.Event()

    @property
    def is_running(self):
        return self._running.is_set()

    def __await__(self):
        return self._running.wait().__await__()

    def _started(self, task_status: TaskStatus[None] = TASK_STATUS_IGNORED):
        # Inform any awaiters that we are ready.
        task_status.started()
        self._running.set()

    async def __call__(self, task_status: TaskStatus[None] = TASK_STATUS_IGNORED):
        raise NotImplementedError()

    def stop(self):
        if self._task_group:
            self._task_group.cancel_scope.cancel()
        self.reset_task()
