import logging
import math
import typing

import anyio
from anyio import TASK_STATUS_IGNORED
from anyio.abc import TaskStatus

from lightkube.core import resource as lkr

from .tasks import Task, invoke


__all__ = [
    'EventSource',
]

log = logging.getLogger(__name__)


class EventSource(Task):
    """Receives the events of one informer, filters them through the
    predicates and hands the remaining ones to `sink`, in order."""

    def __init__(self, resource: lkr.Resource, sink: typing.Callable,
            predicates: typing.List[typing.Callable] = None):
        super().__init__()
        self.resource = resource
        self.sink = sink
        self.predicates = predicates or []
        self.tx, self.rx = anyio.create_memory_object_stream(math.inf)

    def __repr__(self):
        api_version = self.resource._api_info.resource.api_version
        kind = self.resource._api_info.resource.kind
        return f'<{self.__class__.__name__} {api_version}/{kind}>'

    @property
    def stream(self):
        """A new send stream to hand to an informer."""
        return self.tx.clone()

    async def accepts(self, event):
        for predicate in self.predicates:
            if not await invoke(predicate, event):
                log.debug('predicate prevented event: %r', event)
                return False
        return True

    async def handle(self, event):
        log.debug('received event: %r', event)
        try:
            if await self.accepts(event):
                await self.sink(event)
        except Exception:
            # A broken event must not stop the stream.
            log.exception('failed to process %r', event)

    async def __call__(self, task_status: TaskStatus[None] = TASK_STATUS_IGNORED):
        log.debug('starting %s', self)
        try:
            self._started(task_status)
            async with self.rx:
                async for event in self.rx:
                    await self.handle(event)
        except anyio.get_cancelled_exc_class():
            log.debug('canceled %s', self)
            raise
        finally:
            log.debug('stopped %s', self)
