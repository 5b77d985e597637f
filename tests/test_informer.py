import math

import anyio
import httpx
import pytest

from lightkube.resources.core_v1 import Pod

from habop.cache import CreateEvent, DeleteEvent, Informer, UpdateEvent

from fakes import FakeApiClient, pod

pytestmark = pytest.mark.anyio


def versioned(name, address, version):
    p = pod(name, address)
    p.metadata.resourceVersion = version
    return p


def http_error(status_code):
    request = httpx.Request('GET', 'https://k8s/api/v1/pods')
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError('error', request=request, response=response)


async def receive(rx, count):
    events = []
    with anyio.fail_after(2):
        for _ in range(count):
            events.append(await rx.receive())
    return events


async def test_initial_list_creates_and_populates_store():
    api = FakeApiClient([versioned('db-a', '10.0.0.1', '1'), versioned('db-b', '10.0.0.2', '2')])
    informer = Informer(api, Pod, namespace='default', labels={'habitat': 'true'})
    tx, rx = anyio.create_memory_object_stream(math.inf)
    informer.add_stream(tx)

    async with anyio.create_task_group() as tg:
        await tg.start(informer)
        # The store is populated once the informer is started.
        assert len(informer.store) == 2
        events = await receive(rx, 2)
        tg.cancel_scope.cancel()

    assert [type(e) for e in events] == [CreateEvent, CreateEvent]
    assert [e.obj.metadata.name for e in events] == ['db-a', 'db-b']
    assert api.lists == [(Pod, 'default', {'habitat': 'true'})]
    assert informer.resource_version == '100'


async def test_watch_events():
    api = FakeApiClient([versioned('db-a', '10.0.0.1', '1')])
    informer = Informer(api, Pod, namespace='default')
    tx, rx = anyio.create_memory_object_stream(math.inf)
    informer.add_stream(tx)

    async with anyio.create_task_group() as tg:
        await tg.start(informer)
        await receive(rx, 1)

        await api.changes.send(('ADDED', versioned('db-b', '10.0.0.2', '101')))
        # Same version as already known, nothing changed.
        await api.changes.send(('MODIFIED', versioned('db-a', '10.0.0.1', '1')))
        await api.changes.send(('MODIFIED', versioned('db-a', '10.0.0.1', '102')))
        await api.changes.send(('DELETED', versioned('db-b', '10.0.0.2', '103')))
        events = await receive(rx, 3)
        tg.cancel_scope.cancel()

    assert [type(e) for e in events] == [CreateEvent, UpdateEvent, DeleteEvent]
    assert events[0].obj.metadata.name == 'db-b'
    assert events[1].old.metadata.resourceVersion == '1'
    assert events[1].new.metadata.resourceVersion == '102'
    assert events[2].obj.metadata.name == 'db-b'
    assert informer.resource_version == '103'
    assert len(informer.store) == 1
    assert api.watches == ['100']


async def test_resync_updates_unchanged_and_deletes_vanished():
    api = FakeApiClient([versioned('db-a', '10.0.0.1', '1'), versioned('db-b', '10.0.0.2', '2')])
    informer = Informer(api, Pod, namespace='default', resync_after=0.05)
    tx, rx = anyio.create_memory_object_stream(math.inf)
    informer.add_stream(tx)

    async with anyio.create_task_group() as tg:
        await tg.start(informer)
        await receive(rx, 2)

        # db-b went away while nobody was watching.
        api.objects = [versioned('db-a', '10.0.0.1', '1')]
        events = await receive(rx, 2)
        tg.cancel_scope.cancel()

    assert type(events[0]) is UpdateEvent
    assert events[0].obj.metadata.name == 'db-a'
    assert type(events[1]) is DeleteEvent
    assert events[1].obj.metadata.name == 'db-b'
    assert len(informer.store) == 1


async def test_transformer():
    api = FakeApiClient([versioned('db-a', '10.0.0.1', '1')])

    def transformer(obj):
        obj.metadata.annotations = {'seen': 'yes'}
        return obj

    informer = Informer(api, Pod, transformer=transformer)
    tx, rx = anyio.create_memory_object_stream(math.inf)
    informer.add_stream(tx)

    async with anyio.create_task_group() as tg:
        await tg.start(informer)
        [event] = await receive(rx, 1)
        tg.cancel_scope.cancel()

    assert event.obj.metadata.annotations == {'seen': 'yes'}


async def test_list_errors_are_retried():
    api = FakeApiClient([versioned('db-a', '10.0.0.1', '1')], errors=[http_error(500)])
    informer = Informer(api, Pod, backoff=0.01)
    tx, rx = anyio.create_memory_object_stream(math.inf)
    informer.add_stream(tx)

    async with anyio.create_task_group() as tg:
        with anyio.fail_after(2):
            await tg.start(informer)
        [event] = await receive(rx, 1)
        tg.cancel_scope.cancel()

    assert type(event) is CreateEvent
    assert len(api.lists) == 2


async def test_closed_streams_are_removed():
    api = FakeApiClient([versioned('db-a', '10.0.0.1', '1')])
    informer = Informer(api, Pod)
    tx, rx = anyio.create_memory_object_stream(math.inf)
    informer.add_stream(tx, key='controller')
    rx.close()

    async with anyio.create_task_group() as tg:
        await tg.start(informer)
        assert not informer.has_stream(key='controller')
        tg.cancel_scope.cancel()
