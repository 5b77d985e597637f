import dataclasses
import logging
import typing

import anyio
import httpx
from anyio import TASK_STATUS_IGNORED
from anyio.abc import TaskStatus

from lightkube.core import resource as lkr

from ..exceptions import HttpError
from ..resources import is_same_version
from ..tasks import Task
from .events import CreateEvent, DeleteEvent, UpdateEvent
from .store import Store


log = logging.getLogger(__name__)


@dataclasses.dataclass(eq=False)
class Informer(Task):
    """Lists and watches one kind of object and sends Create-, Update- and
    DeleteEvents to all its streams, in the order they were observed.

    Every `resync_after` seconds the objects are listed again. All objects
    still present are then sent as UpdateEvents, changed or not, and
    objects which disappeared in the meantime as DeleteEvents.
    """

    api_client: object
    resource: lkr.Resource
    store: Store = dataclasses.field(default_factory=Store)
    namespace: str = None
    labels: dict = None
    resync_after: float = 60
    timeout: float = 60
    backoff: float = 5
    transformer: typing.Callable = None
    resource_version: str = None

    @property
    def api_version(self) -> str:
        return self.resource._api_info.resource.api_version

    @property
    def kind(self) -> str:
        return self.resource._api_info.resource.kind

    def __post_init__(self):
        super().__init__()
        self._streams = {}

    def __repr__(self):
        _out = [f'{self.api_version}/{self.kind}']
        if self.namespace is not None:
            _out.append(self.namespace)
        if self.resource_version:
            _out.append(self.resource_version)
        _s = ' '.join(_out)
        return f'<Informer {_s}>'

    def add_stream(self, stream, key=None):
        if key is None:
            key = stream
        self._streams[key] = stream

    def has_stream(self, stream=None, key=None):
        if key is None:
            key = stream
        return key in self._streams

    def remove_stream(self, stream=None, key=None):
        if key is None:
            key = stream
        self._streams.pop(key, None)

    def purge_streams(self):
        for stream in self._streams.values():
            stream.close()
        self._streams.clear()

    async def _stream_send(self, key, event):
        try:
            stream = self._streams[key]
            await stream.send(event)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            self.remove_stream(key=key)

    async def _dispatch(self, event):
        """Send the event to all our streams."""
        # We iterate over a list of keys because the dict may change
        # while we're iterating over it.
        for key in list(self._streams.keys()):
            await self._stream_send(key, event)

    async def _add_or_update(self, obj, resync=False):
        old = self.store.add(obj)
        if old is None:
            await self._dispatch(CreateEvent(obj))
        elif resync or not is_same_version(obj, old):
            await self._dispatch(UpdateEvent(old, obj))

    async def _delete(self, obj):
        self.store.delete(obj)
        await self._dispatch(DeleteEvent(obj))

    def _transform(self, obj):
        if callable(self.transformer):
            obj = self.transformer(obj)
        return obj

    async def _process_event(self, event, obj):
        obj = self._transform(obj)
        match event:
            case 'ADDED' | 'MODIFIED':
                await self._add_or_update(obj)
            case 'DELETED':
                await self._delete(obj)
        resource_version = obj.metadata.resourceVersion
        if resource_version:
            self.resource_version = resource_version

    async def _list(self):
        log.debug('start listing %s/%s', self.api_version, self.kind)
        # A list after the initial one is a resync.
        resync = len(self.store) > 0
        seen = set()
        try:
            with anyio.fail_after(self.timeout):
                async for obj in (
                    resource_list := self.api_client.list(
                        self.resource,
                        namespace=self.namespace,
                        labels=self.labels,
                    )
                ):
                    obj = self._transform(obj)
                    seen.add(self.store.key_func(obj))
                    await self._add_or_update(obj, resync=resync)
                self.resource_version = resource_list.resourceVersion
        except httpx.HTTPStatusError as e:
            raise HttpError(
                e.request.method,
                e.request.url,
                e.response.status_code,
                message=f'HTTP error while listing {self.api_version}/{self.kind}'
            ) from e
        except TimeoutError as e:
            raise TimeoutError(
                f'TimeoutError while listing {self.api_version}/{self.kind}'
            ) from e

        # Objects deleted while we were not watching.
        for obj in self.store.list():
            if self.store.key_func(obj) not in seen:
                await self._delete(obj)

        log.debug(
            'done listing %s/%s %s',
            self.api_version,
            self.kind,
            self.resource_version,
        )

    async def _watch(self):
        log.debug(
            'start watching %s/%s %s',
            self.api_version,
            self.kind,
            self.resource_version,
        )
        while True:
            try:
                async for event, obj in self.api_client.watch(
                    self.resource,
                    namespace=self.namespace,
                    labels=self.labels,
                    resource_version=self.resource_version,
                ):
                    await self._process_event(event, obj)
            except httpx.HTTPStatusError as e:
                raise HttpError(
                    e.request.method,
                    e.request.url,
                    e.response.status_code,
                    message=f'HTTP error while watching {self.api_version}/{self.kind}'
                ) from e

    async def _listwatch(self, task_status: TaskStatus[None] = TASK_STATUS_IGNORED):
        synced = False
        while True:
            try:
                await self._list()

                if not synced:
                    # The store is populated.
                    synced = True
                    task_status.started()

                # Continue watching for changes until the next resync.
                with anyio.move_on_after(self.resync_after) as scope:
                    await self._watch()

                if scope.cancelled_caught:
                    log.debug('resyncing %s', self)

            except (TimeoutError, HttpError, httpx.TransportError) as e:
                log.error('%s: %s', self, e)
                await anyio.sleep(self.backoff)

    async def __call__(self, task_status: TaskStatus[None] = TASK_STATUS_IGNORED):
        log.debug('starting %s', self)

        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg

                try:
                    await tg.start(self._listwatch)

                    log.info('started %s', self)
                    self._started(task_status)

                    # Wait until told otherwise.
                    await self._stop.wait()

                except anyio.get_cancelled_exc_class():
                    log.debug('canceled %s', self)
                    raise

                finally:
                    log.debug('stopping %s', self)
                    self.purge_streams()

        finally:
            log.info('stopped %s', self)
