import contextlib

import anyio
import pytest

from lightkube.resources.core_v1 import Pod

from habop.cache import CreateEvent, DeleteEvent, UpdateEvent
from habop.controller import Controller, Request
from habop.exceptions import (
    ApiObjectNotFound,
    Conflict,
    PermanentError,
    Rejected,
    TemporaryError,
    ValidationError,
)

from fakes import pod

pytestmark = pytest.mark.anyio


async def wait_for(condition, timeout=2):
    with anyio.fail_after(timeout):
        while not condition():
            await anyio.sleep(0.001)


@contextlib.asynccontextmanager
async def running(controller):
    async with anyio.create_task_group() as tg:
        await tg.start(controller)
        yield controller
        tg.cancel_scope.cancel()


def update(name, address, sg_name='db'):
    old = pod(name, address, phase='Pending', sg_name=sg_name)
    return UpdateEvent(old, pod(name, address, sg_name=sg_name))


async def test_dispatch_by_event_type():
    client = object()
    calls = []

    async def on_create(c, event):
        calls.append(('create', c, event))

    async def on_update(c, event):
        calls.append(('update', c, event))

    async def on_delete(c, event):
        calls.append(('delete', c, event))

    controller = Controller(
        client, Pod,
        on_create=on_create, on_update=on_update, on_delete=on_delete,
    )
    p = pod('db-a', '10.0.0.1')
    events = [CreateEvent(p), UpdateEvent(p, p), DeleteEvent(p)]
    for event in events:
        await controller.dispatch(event)

    assert calls == [
        ('create', client, events[0]),
        ('update', client, events[1]),
        ('delete', client, events[2]),
    ]


async def test_dispatch_without_handler():
    controller = Controller(None, Pod)
    await controller.dispatch(CreateEvent(pod('db-a', '10.0.0.1')))
    await controller.dispatch('not an event')


async def test_events_of_one_request_are_serialized():
    seen = []

    async def on_update(client, event):
        seen.append(('start', event.obj.status.podIP))
        await anyio.sleep(0.01)
        seen.append(('end', event.obj.status.podIP))

    controller = Controller(None, Pod, on_update=on_update, concurrency=4)
    async with running(controller):
        for address in ('10.0.0.1', '10.0.0.2', '10.0.0.3'):
            await controller.enqueue(update('db-a', address))
        await wait_for(lambda: len(seen) == 6)

    assert seen == [
        ('start', '10.0.0.1'), ('end', '10.0.0.1'),
        ('start', '10.0.0.2'), ('end', '10.0.0.2'),
        ('start', '10.0.0.3'), ('end', '10.0.0.3'),
    ]


async def test_requests_are_processed_concurrently():
    started = set()
    both = anyio.Event()

    async def on_update(client, event):
        started.add(event.obj.metadata.name)
        if len(started) == 2:
            both.set()
        # Blocks forever unless the other request runs at the same time.
        with anyio.fail_after(1):
            await both.wait()

    controller = Controller(None, Pod, on_update=on_update, concurrency=2)
    async with running(controller):
        await controller.enqueue(update('db-a', '10.0.0.1'))
        await controller.enqueue(update('db-b', '10.0.0.2'))
        with anyio.fail_after(2):
            await both.wait()


async def test_custom_key_groups_events():
    seen = []

    def key(event):
        return Request(Pod, event.obj.metadata.labels['habitat-name'], 'default')

    async def on_update(client, event):
        seen.append(event.obj.metadata.name)
        await anyio.sleep(0.01)

    controller = Controller(None, Pod, key=key, on_update=on_update, concurrency=4)
    async with running(controller):
        await controller.enqueue(update('db-a', '10.0.0.1'))
        await controller.enqueue(update('db-b', '10.0.0.2'))
        await controller.enqueue(update('web-a', '10.0.1.1', sg_name='web'))
        await wait_for(lambda: len(seen) == 3)

    # db-a and db-b belong to the same group.
    assert seen.index('db-a') < seen.index('db-b')


async def test_temporary_error_is_retried_before_later_events():
    seen = []
    failures = [TemporaryError('not yet', delay=0)]

    async def on_update(client, event):
        seen.append(event.obj.status.podIP)
        if failures:
            raise failures.pop()

    controller = Controller(None, Pod, on_update=on_update, concurrency=2)
    async with running(controller):
        await controller.enqueue(update('db-a', '10.0.0.1'))
        await controller.enqueue(update('db-a', '10.0.0.2'))
        await wait_for(lambda: len(seen) == 3)

    assert seen == ['10.0.0.1', '10.0.0.1', '10.0.0.2']


async def test_later_events_wait_for_the_retry_delay():
    seen = []
    failures = [TemporaryError('not yet', delay=0.3)]

    async def on_update(client, event):
        seen.append(event.obj.status.podIP)
        if failures:
            raise failures.pop()

    controller = Controller(None, Pod, on_update=on_update, max_retries=1)
    async with running(controller):
        await controller.enqueue(update('db-a', '10.0.0.1'))
        await wait_for(lambda: seen)
        # Every one of these would otherwise run the failed event again.
        for n in range(2, 6):
            await controller.enqueue(update('db-a', f'10.0.0.{n}'))
            await anyio.sleep(0.01)
        await anyio.sleep(0.1)
        assert seen == ['10.0.0.1']
        await wait_for(lambda: len(seen) == 6)

    assert seen == [
        '10.0.0.1', '10.0.0.1', '10.0.0.2', '10.0.0.3', '10.0.0.4', '10.0.0.5',
    ]


async def test_conflict_is_retried():
    seen = []
    p = pod('db-a', '10.0.0.1')
    failures = [Conflict(p)]

    async def on_update(client, event):
        seen.append(event.obj.status.podIP)
        if failures:
            raise failures.pop()

    controller = Controller(None, Pod, on_update=on_update)
    async with running(controller):
        await controller.enqueue(update('db-a', '10.0.0.1'))
        await wait_for(lambda: len(seen) == 2)
        await wait_for(lambda: not controller.pending(Request(Pod, 'db-a', 'default')))


async def test_retries_are_bounded():
    seen = []

    async def on_update(client, event):
        seen.append(event.obj.status.podIP)
        if event.obj.status.podIP == '10.0.0.1':
            raise RuntimeError('boom')

    controller = Controller(None, Pod, on_update=on_update, max_retries=2)
    async with running(controller):
        await controller.enqueue(update('db-a', '10.0.0.1'))
        await controller.enqueue(update('db-a', '10.0.0.2'))
        await wait_for(lambda: '10.0.0.2' in seen)

    assert seen == ['10.0.0.1', '10.0.0.1', '10.0.0.1', '10.0.0.2']


@pytest.mark.parametrize('error', [
    ValidationError('spec.count', 'must be a positive integer'),
    PermanentError('broken'),
    Rejected(422, 'spec.replicas: Invalid value'),
    ApiObjectNotFound(Pod, 'db-a', namespace='default'),
])
async def test_permanent_errors_are_not_retried(error):
    seen = []

    async def on_update(client, event):
        seen.append(event.obj.status.podIP)
        if event.obj.status.podIP == '10.0.0.1':
            raise error

    controller = Controller(None, Pod, on_update=on_update)
    async with running(controller):
        await controller.enqueue(update('db-a', '10.0.0.1'))
        await controller.enqueue(update('db-a', '10.0.0.2'))
        await wait_for(lambda: '10.0.0.2' in seen)

    assert seen == ['10.0.0.1', '10.0.0.2']


async def test_predicates_and_unkeyed_events_are_dropped():
    seen = []

    def managed(event):
        return event.obj.metadata.labels.get('habitat') == 'true'

    def key(event):
        name = event.obj.metadata.labels.get('habitat-name')
        if name is None:
            return None
        return Request(Pod, name, 'default')

    async def on_update(client, event):
        seen.append(event.obj.metadata.name)

    controller = Controller(
        None, Pod, key=key, predicates=[managed], on_update=on_update,
    )
    async with running(controller):
        stream = controller.source.stream
        await stream.send(update('other', '10.0.9.1', sg_name=None))
        await stream.send(UpdateEvent(
            pod('unmanaged', '10.0.9.2'),
            pod('unmanaged', '10.0.9.2', managed=False),
        ))
        await stream.send(update('db-a', '10.0.0.1'))
        await wait_for(lambda: seen)
        await anyio.sleep(0.05)

    assert seen == ['db-a']
