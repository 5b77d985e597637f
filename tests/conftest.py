import pytest

from habop.servicegroup import create_service_group

from fakes import FakeClient, service_group


@pytest.fixture
def anyio_backend():
    return 'asyncio'


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
async def db(client):
    """A created service group `db` with its Deployment and empty record."""
    sg = service_group('db')
    await create_service_group(client, sg)
    client.calls.clear()
    return sg
