"""
The ServiceGroup custom resource.

ServiceGroups are read from the api server as lightkube generic resources
and decoded once, at the watch boundary, into the typed objects below.
"""

import dataclasses
import typing

from lightkube.generic_resource import create_namespaced_resource
from lightkube.models.meta_v1 import ObjectMeta

__all__ = [
    'GROUP',
    'VERSION',
    'Bind',
    'ServiceGroup',
    'ServiceGroupResource',
    'ServiceGroupSpec',
    'TOPOLOGIES',
    'decode_service_group',
]


GROUP = 'habitat.sh'
VERSION = 'v1'

TOPOLOGIES = ('standalone', 'leader')

ServiceGroupResource = create_namespaced_resource(
    group=GROUP,
    version=VERSION,
    kind='ServiceGroup',
    plural='servicegroups',
)


def _mapping(value):
    if isinstance(value, dict):
        return value
    return {}


@dataclasses.dataclass
class Bind:
    """A bind to another service group, as in `--bind name:service.group`."""

    name: str = None
    service: str = None
    group: str = None

    @classmethod
    def from_dict(cls, d):
        d = _mapping(d)
        return cls(
            name=d.get('name'),
            service=d.get('service'),
            group=d.get('group'),
        )


@dataclasses.dataclass
class ServiceGroupSpec:
    count: int = None
    image: str = None
    group: str = None
    topology: str = None
    binds: typing.List[Bind] = dataclasses.field(default_factory=list)
    config_secret_name: str = None

    @classmethod
    def from_dict(cls, d):
        d = _mapping(d)
        service = _mapping(d.get('service'))
        binds = service.get('bind') or []
        if not isinstance(binds, list):
            binds = [binds]
        return cls(
            count=d.get('count'),
            image=d.get('image'),
            group=service.get('group'),
            topology=service.get('topology'),
            binds=[Bind.from_dict(item) for item in binds],
            config_secret_name=service.get('configSecretName'),
        )


@dataclasses.dataclass
class ServiceGroup:
    metadata: ObjectMeta
    spec: ServiceGroupSpec = dataclasses.field(default_factory=ServiceGroupSpec)
    apiVersion: str = f'{GROUP}/{VERSION}'
    kind: str = 'ServiceGroup'

    def __repr__(self):
        return f'<ServiceGroup {self.namespace}/{self.name}>'

    @property
    def name(self):
        return self.metadata.name

    @property
    def namespace(self):
        return self.metadata.namespace

    @classmethod
    def from_dict(cls, d):
        d = _mapping(d)
        metadata = d.get('metadata')
        if not isinstance(metadata, ObjectMeta):
            metadata = ObjectMeta.from_dict(_mapping(metadata))
        return cls(
            metadata=metadata,
            spec=ServiceGroupSpec.from_dict(d.get('spec')),
        )


def decode_service_group(obj):
    """Informer transformer turning generic ServiceGroup objects into
    `ServiceGroup` instances."""
    if isinstance(obj, ServiceGroup):
        return obj
    return ServiceGroup.from_dict(obj)
