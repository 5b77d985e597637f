import logging

from lightkube.types import CascadeType

from .exceptions import (
    AlreadyExists,
    ApiError,
    ApiObjectNotFound,
    Conflict,
    Rejected,
)

__all__ = [
    'Client',
]

log = logging.getLogger(__name__)


def _status_code(e):
    status = getattr(e, 'status', None)
    code = getattr(status, 'code', None)
    if code is None and e.response is not None:
        code = e.response.status_code
    return code


# 404 and 409 mean different things per call, 429 asks us to come back later.
_NOT_REJECTED = (404, 409, 429)


def _raise_if_rejected(e):
    """Turn a client error that retrying won't fix into Rejected."""
    code = _status_code(e)
    if code is not None and 400 <= code < 500 and code not in _NOT_REJECTED:
        raise Rejected(code, message=e.status.message) from e


class Client:
    """Handler facing interface to the api server.

    Wraps a lightkube AsyncClient and translates the api errors handlers
    care about into our own exceptions. Client errors other than 404, 409
    and 429 become Rejected, a PermanentError.
    """

    def __init__(self, api_client):
        self.api_client = api_client

    async def get(self, resource, *, name, namespace=None):
        try:
            return await self.api_client.get(resource, name, namespace=namespace)
        except ApiError as e:
            if _status_code(e) == 404:
                raise ApiObjectNotFound(resource, name, namespace=namespace) from e
            _raise_if_rejected(e)
            raise

    async def list(self, resource, *, namespace=None, labels=None, fields=None):
        try:
            return [
                obj
                async for obj in self.api_client.list(
                    resource,
                    namespace=namespace,
                    labels=labels,
                    fields=fields,
                )
            ]
        except ApiError as e:
            _raise_if_rejected(e)
            raise

    async def create(self, obj):
        try:
            return await self.api_client.create(obj)
        except ApiError as e:
            if _status_code(e) == 409:
                raise AlreadyExists(obj, message=e.status.message) from e
            _raise_if_rejected(e)
            raise

    async def update(self, obj):
        """Replace the object on the api server.
        Fails with Conflict if the object carries an outdated resourceVersion."""
        try:
            return await self.api_client.replace(obj)
        except ApiError as e:
            match _status_code(e):
                case 404:
                    raise ApiObjectNotFound(
                        type(obj),
                        obj.metadata.name,
                        namespace=obj.metadata.namespace,
                    ) from e
                case 409:
                    raise Conflict(obj, message=e.status.message) from e
            _raise_if_rejected(e)
            raise

    async def delete(self, resource, *, name, namespace=None,
            cascade=CascadeType.BACKGROUND):
        """Delete an object. With the default background cascade its
        dependents are garbage collected without waiting for them."""
        try:
            return await self.api_client.delete(
                resource, name, namespace=namespace, cascade=cascade
            )
        except ApiError as e:
            if _status_code(e) == 404:
                raise ApiObjectNotFound(resource, name, namespace=namespace) from e
            _raise_if_rejected(e)
            raise
