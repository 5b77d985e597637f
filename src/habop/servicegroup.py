"""
Reconciliation of ServiceGroup lifecycle events.

A new service group gets a Deployment and an empty peer address record.
Updates are only logged. A deleted service group loses its Deployment,
but its peer address record is left in place.
"""

import logging

from lightkube.resources.apps_v1 import Deployment
from lightkube.resources.core_v1 import ConfigMap
from lightkube.types import CascadeType

from . import records
from .config import DEFAULT_GROUP
from .exceptions import AlreadyExists, ObjectNotFound
from .validation import validate_service_group

__all__ = [
    'create_service_group',
    'delete_service_group',
    'update_service_group',
]

log = logging.getLogger(__name__)


async def _ensure_deployment(client, sg, group):
    deployment = records.new_deployment(sg, group)
    try:
        deployment = await client.create(deployment)
        log.info('created deployment %s/%s', sg.namespace, sg.name)
    except AlreadyExists:
        # e.g. we were restarted and see all service groups as new again.
        log.info('deployment %s/%s already exists', sg.namespace, sg.name)
        deployment = await client.get(Deployment, name=sg.name, namespace=sg.namespace)
    return deployment


async def _ensure_config_map(client, sg, deployment):
    config_map = records.new_config_map(sg.name, sg.namespace, owner=deployment)
    try:
        config_map = await client.create(config_map)
        log.info('created peer address record %s/%s',
            sg.namespace, config_map.metadata.name)
    except AlreadyExists:
        # A record left behind by an earlier incarnation of this service
        # group. Keep its leader address, the pod handlers verify it, but
        # hand it over to the current deployment.
        config_map = await client.get(
            ConfigMap,
            name=records.config_map_name(sg.name),
            namespace=sg.namespace,
        )
        if not records.is_owned_by(config_map, deployment):
            config_map = await client.update(records.adopt(config_map, deployment))
            log.info('adopted peer address record %s/%s',
                sg.namespace, config_map.metadata.name)
    return config_map


async def create_service_group(client, sg, default_group=DEFAULT_GROUP):
    """Create the Deployment and peer address record of a new service group.

    Raises ValidationError before anything is created if the service group
    is not well-formed. If creating the Deployment fails no record is
    created.
    """
    log.debug('create_service_group: %r', sg)

    validate_service_group(sg)
    log.debug('validated %r', sg)

    group = sg.spec.group or default_group

    deployment = await _ensure_deployment(client, sg, group)
    # The record has to exist before the first pod starts, as pods mount it.
    return deployment, await _ensure_config_map(client, sg, deployment)


async def update_service_group(client, old, new):
    # Changes to existing service groups are not applied.
    log.info('service group %s/%s updated, ignoring changes', new.namespace, new.name)


async def delete_service_group(client, sg):
    """Delete the Deployment of a service group and, in the background,
    its pods. The peer address record is not touched."""
    log.debug('delete_service_group: %r', sg)
    try:
        await client.delete(
            Deployment,
            name=sg.name,
            namespace=sg.namespace,
            cascade=CascadeType.BACKGROUND,
        )
    except ObjectNotFound:
        log.info('deployment %s/%s is already gone', sg.namespace, sg.name)
        return
    log.info('deleted deployment %s/%s', sg.namespace, sg.name)
