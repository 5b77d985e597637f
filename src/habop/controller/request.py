import logging

from ..resources import api_version_kind


log = logging.getLogger(__name__)


class Request:
    """Identifies the object a queued event is processed for.

    All events with equal requests are processed one after the other, in
    the order they arrived.
    """

    resource: object
    name: str
    namespace: str = None
    retries: int = 0

    def __init__(self, resource, name, namespace=None):
        self.resource = resource
        self.api_version, self.kind = api_version_kind(resource)
        self.name = name
        self.namespace = namespace
        self.retries = 0

    def _key(self):
        return (self.api_version, self.kind, self.namespace, self.name)

    def __hash__(self):
        return hash(self._key())

    def __eq__(self, other):
        if not isinstance(other, Request):
            return NotImplemented
        return self._key() == other._key()

    def __repr__(self):
        if self.namespace is not None:
            name = f'{self.namespace}/{self.name}'
        else:
            name = self.name
        return f'<Request {self.api_version}/{self.kind} {name} retries: {self.retries}>'


def request_for_object(resource, obj):
    """Return the request for the given object of the given resource."""
    if obj is None or obj.metadata is None:
        return None
    return Request(resource, obj.metadata.name, namespace=obj.metadata.namespace)
