import yaml

from lightkube.core import resource as lkr

__all__ = [
    'api_version_kind',
    'is_same_version',
    'resources_to_yaml',
]


# Monkeypatch lightkube Resources __repr__ to something more useful in logs.
def _resource__repr__(self):
    api_version = self.apiVersion
    kind = self.kind
    name = self.metadata.name if self.metadata else None
    namespace = self.metadata.namespace if self.metadata else None
    resource_version = self.metadata.resourceVersion if self.metadata else None
    out = []
    out.append(f'{api_version}/{kind}')
    if namespace is not None:
        out.append(f'{namespace}/{name}')
    elif name is not None:
        out.append(f'{name}')
    if resource_version is not None:
        out.append(resource_version)
    ident = ' '.join(out)
    return f'<Object {ident}>'

lkr.Resource.__repr__ = _resource__repr__


def api_version_kind(resource):
    """Return the apiVersion and kind of a lightkube resource class."""
    info = lkr.api_info(resource)
    return info.resource.api_version, info.resource.kind


def is_same_version(o1, o2):
    o1_resource_version = o1.metadata.resourceVersion
    o2_resource_version = o2.metadata.resourceVersion
    return (
        o1_resource_version is not None and o1_resource_version == o2_resource_version
    )


_resource_key_order = ['apiVersion', 'kind', 'metadata', 'spec', 'data', 'status']


def _resources_as_dicts(*objects):
    """Convert a list of given resources to dicts.
    - lightkube omits keys that do not have a value.
    - we ensure the keys are emitted in a user readable order
    """
    dicts = []
    for obj in objects:
        tmp = obj.to_dict()
        keys = dict.fromkeys(_resource_key_order + list(tmp.keys()))
        dicts.append({k: tmp[k] for k in keys if k in tmp})
    return dicts


class YamlDumper(yaml.SafeDumper):
    def ignore_aliases(self, data):
        return True


def resources_to_yaml(*objects):
    """Serialize one or more resources to a yaml document
    that kubernetes understands.

    We prevent the yaml Dumper from using any alias references as
    kubernetes does not understand those.
    """
    dicts = _resources_as_dicts(*objects)
    return yaml.dump_all(dicts, sort_keys=False, Dumper=YamlDumper)
