"""
Construction of the objects the operator maintains for a service group:

* a Deployment running the group's pods, and
* a ConfigMap, the peer address record, holding the address of the
  current leader which new pods use to join the peer ring.
"""

import copy

from lightkube.models.apps_v1 import DeploymentSpec
from lightkube.models.core_v1 import (
    ConfigMapVolumeSource,
    Container,
    KeyToPath,
    PodSpec,
    PodTemplateSpec,
    SecretVolumeSource,
    Volume,
    VolumeMount,
)
from lightkube.models.meta_v1 import LabelSelector, ObjectMeta, OwnerReference
from lightkube.resources.apps_v1 import Deployment
from lightkube.resources.core_v1 import ConfigMap

from .resources import api_version_kind


# Label marking pods as managed by us.
MANAGED_LABEL = 'habitat'
# Label holding the name of the service group a pod belongs to.
GROUP_LABEL = 'habitat-name'

CONTAINER_NAME = 'habitat-service'

# The key in the ConfigMap that holds the leader address and the file
# it is exposed as inside of each pod.
PEER_FILE_KEY = 'peer-watch-file'
PEER_FILE_PATH = 'peer-ip'
PEER_VOLUME = 'config'
PEER_MOUNT_PATH = '/habitat-operator'

USER_TOML = 'user.toml'
USER_CONFIG_VOLUME = 'initialconfig'


def config_map_name(service_group_name):
    return f'{service_group_name}-peer-file'


def pod_labels(service_group_name):
    return {
        MANAGED_LABEL: 'true',
        GROUP_LABEL: service_group_name,
    }


def container_args(sg, group):
    args = ['--group', group]
    if sg.spec.topology:
        args.extend(['--topology', sg.spec.topology])
    for bind in sg.spec.binds:
        args.extend(['--bind', f'{bind.name}:{bind.service}.{bind.group}'])
    return args


def new_deployment(sg, group):
    """Return the Deployment for the given service group.
    `group` is the effective peer group name passed to each pod."""
    labels = pod_labels(sg.name)

    volumes = [
        Volume(
            name=PEER_VOLUME,
            configMap=ConfigMapVolumeSource(
                name=config_map_name(sg.name),
                items=[KeyToPath(key=PEER_FILE_KEY, path=PEER_FILE_PATH)],
            ),
        ),
    ]
    mounts = [
        VolumeMount(name=PEER_VOLUME, mountPath=PEER_MOUNT_PATH, readOnly=True),
    ]

    if sg.spec.config_secret_name:
        # Initial configuration, mounted as the service's user.toml.
        volumes.append(Volume(
            name=USER_CONFIG_VOLUME,
            secret=SecretVolumeSource(
                secretName=sg.spec.config_secret_name,
                items=[KeyToPath(key=USER_TOML, path=USER_TOML)],
            ),
        ))
        mounts.append(VolumeMount(
            name=USER_CONFIG_VOLUME,
            mountPath=f'/hab/svc/{sg.name}/{USER_TOML}',
            subPath=USER_TOML,
            readOnly=False,
        ))

    return Deployment(
        apiVersion='apps/v1',
        kind='Deployment',
        metadata=ObjectMeta(
            name=sg.name,
            namespace=sg.namespace,
            labels=dict(labels),
        ),
        spec=DeploymentSpec(
            replicas=sg.spec.count,
            selector=LabelSelector(matchLabels=dict(labels)),
            template=PodTemplateSpec(
                metadata=ObjectMeta(labels=dict(labels)),
                spec=PodSpec(
                    containers=[
                        Container(
                            name=CONTAINER_NAME,
                            image=sg.spec.image,
                            args=container_args(sg, group),
                            volumeMounts=mounts,
                        ),
                    ],
                    volumes=volumes,
                ),
            ),
        ),
    )


def set_owner_reference(owner, subject, block_owner_deletion=False, controller=False):
    if subject.metadata.ownerReferences is None:
        subject.metadata.ownerReferences = []
    if controller:
        for existing_ref in subject.metadata.ownerReferences:
            if existing_ref.controller:
                raise ValueError(f'Already owned by a controller: {existing_ref!r}')
    api_version, kind = api_version_kind(type(owner))
    ref = OwnerReference(
        apiVersion=api_version,
        kind=kind,
        name=owner.metadata.name,
        uid=owner.metadata.uid,
        blockOwnerDeletion=block_owner_deletion,
        controller=controller,
    )
    subject.metadata.ownerReferences.append(ref)
    return ref


def is_owned_by(obj, owner):
    refs = obj.metadata.ownerReferences or []
    return any(ref.uid == owner.metadata.uid for ref in refs)


def new_config_map(service_group_name, namespace, owner=None, address=''):
    """Return the peer address record of a service group.
    The record is owned by the given Deployment so it is garbage
    collected together with it."""
    config_map = ConfigMap(
        apiVersion='v1',
        kind='ConfigMap',
        metadata=ObjectMeta(
            name=config_map_name(service_group_name),
            namespace=namespace,
        ),
        data={PEER_FILE_KEY: address},
    )
    if owner is not None:
        set_owner_reference(owner, config_map, controller=True)
    return config_map


def leader_address(config_map):
    """Return the leader address stored in the record, '' for none."""
    return (config_map.data or {}).get(PEER_FILE_KEY, '')


def adopt(config_map, owner):
    """Return a copy of the record owned by the given Deployment only."""
    updated = copy.deepcopy(config_map)
    updated.metadata.ownerReferences = []
    set_owner_reference(owner, updated, controller=True)
    return updated


def with_leader_address(config_map, owner, address):
    """Return a copy of the record holding the given leader address.
    The copy keeps the resourceVersion it was read with, so writing it
    fails if someone else changed the record in between."""
    updated = adopt(config_map, owner)
    updated.data = dict(updated.data or {})
    updated.data[PEER_FILE_KEY] = address
    return updated
