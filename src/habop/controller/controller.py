import collections
import logging
import typing

import anyio
from anyio import TASK_STATUS_IGNORED
from anyio.abc import TaskStatus

from lightkube.core import resource as lkr

from ..cache.events import Event
from ..exceptions import (
    ObjectNotFound,
    PermanentError,
    TemporaryError,
    ValidationError,
)
from ..source import EventSource
from ..tasks import Task, invoke, nonblocking
from ..workqueue import Workqueue

from .request import request_for_object


log = logging.getLogger(__name__)


class WorkerLoggerAdapter(logging.LoggerAdapter):
    """Prefixes the log message with the workers number"""

    def process(self, msg, kwargs):
        worker = 'worker[%i]' % self.extra['num']
        return '%s: %s' % (worker, msg), kwargs


class Controller(Task):
    """Runs the event handlers for one kind of object.

    Events are mapped to a Request by the `key` function. Events with the
    same request are processed strictly one after the other and in the
    order they arrived, events with different requests concurrently by
    up to `concurrency` workers.

    A handler failing with a TemporaryError, a Conflict or any unexpected
    exception is retried with exponential backoff, at most `max_retries`
    times; later events of the same request wait for it. ObjectNotFound
    and PermanentError, ValidationError included, drop the event.
    """

    client: object
    resource: lkr.Resource
    name: str = None
    key: typing.Callable = None
    predicates: typing.List[typing.Callable]
    on_create: typing.Callable = None
    on_update: typing.Callable = None
    on_delete: typing.Callable = None
    concurrency: int = 1
    max_retries: int = 5

    def __init__(self, client, resource,
        name=None, key=None, predicates=None,
        on_create=None, on_update=None, on_delete=None,
        concurrency=1, max_retries=5):
        super().__init__()
        self.client = client
        self.resource = resource
        self.name = name
        self.key = key or self._request_for_event
        self.predicates = predicates or []
        self.on_create = on_create
        self.on_update = on_update
        self.on_delete = on_delete
        self.concurrency = concurrency
        self.max_retries = max_retries

        self.queue = Workqueue()
        self.source = EventSource(
            self.resource,
            self.enqueue,
            predicates=self.predicates,
        )
        self._pending = {}

    def __repr__(self):
        info = self.resource._api_info.resource
        if self.name is not None:
            return f'<{self.__class__.__name__} {self.name} {info.api_version}/{info.kind}>'
        else:
            return f'<{self.__class__.__name__} {info.api_version}/{info.kind}>'

    @nonblocking
    def _request_for_event(self, event):
        return request_for_object(self.resource, event.obj)

    def pending(self, request):
        """Return the events waiting to be processed for the given request."""
        return list(self._pending.get(request, ()))

    async def enqueue(self, event):
        request = await invoke(self.key, event)
        if request is None:
            log.debug('no request for %r, ignoring it', event)
            return
        self._pending.setdefault(request, collections.deque()).append(event)
        await self.queue.add(request)

    async def dispatch(self, event):
        """Call the handler registered for the type of the given event."""
        if not isinstance(event, Event):
            log.error('unknown event type: %r', event)
            return
        handler = None
        match type(event):
            case event.CreateEvent:
                handler = self.on_create
            case event.UpdateEvent:
                handler = self.on_update
            case event.DeleteEvent:
                handler = self.on_delete
        if handler is not None:
            await invoke(handler, self.client, event)

    async def _retry(self, request, event, error, logger, delay=0):
        """Schedule the request for another try. Returns False if the event
        has been retried too often."""
        retries = await self.queue.num_requeues(request)
        if retries >= self.max_retries:
            logger.error('giving up on %r after %i retries: %s', event, retries, error)
            return False
        request.retries = retries + 1
        logger.warning('retrying %r (%i/%i): %s',
            event, request.retries, self.max_retries, error)
        await self.queue.add_rate_limited(request, min_delay=delay)
        return True

    async def process(self, request, logger=log):
        """Process the pending events of the given request.

        Returns when all events are processed or the first one has to be
        retried. A retried event stays at the front of the pending events.
        """
        events = self._pending.get(request, None)
        while events:
            event = events[0]
            logger.debug('processing %r for %r', event, request)
            try:
                await self.dispatch(event)
            except ValidationError as e:
                logger.error('invalid %r: %s: %s', event.obj, e.key, e.message)
            except ObjectNotFound as e:
                # Nothing to work with, retrying won't change that.
                logger.warning('dropping %r: %s', event, e)
            except PermanentError as e:
                logger.error('dropping %r: %s', event, e)
            except TemporaryError as e:
                if await self._retry(request, event, e, logger, delay=e.delay):
                    return
            except Exception as e:
                logger.debug('handler failed', exc_info=True)
                if await self._retry(request, event, e, logger):
                    return
            events.popleft()
            await self.queue.forget(request)
            request.retries = 0
        if request in self._pending and not self._pending[request]:
            del self._pending[request]

    async def _worker(self, num):
        logger = WorkerLoggerAdapter(log, {'num': num})
        logger.debug('started')
        while True:
            request = await self.queue.get()
            try:
                await self.process(request, logger)
            finally:
                # In any case, mark this request as done.
                await self.queue.done(request)

    async def __call__(self, task_status: TaskStatus[None] = TASK_STATUS_IGNORED):
        log.debug('starting %s', self)

        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg

                try:
                    await tg.start(self.queue)
                    await tg.start(self.source)
                    for num in range(self.concurrency):
                        tg.start_soon(self._worker, num)

                    log.info('started %s', self)
                    self._started(task_status)

                    # Wait until told otherwise.
                    await self._stop.wait()

                except anyio.get_cancelled_exc_class():
                    log.debug('canceled %s', self)
                    raise

                finally:
                    log.debug('stopping %s', self)

        finally:
            log.info('stopped %s', self)
