"""
Wiring of the service group operator.

Two controllers are registered with a manager:

* one for ServiceGroups, creating and deleting their Deployments and peer
  address records, and
* one for the pods of the service groups, keeping the leader address in
  the peer address records current.

Pod events are keyed by the service group the pod belongs to, so all
leader decisions of one group happen one after the other.
"""

import logging

from lightkube.resources.core_v1 import Pod

from . import leader, records
from .controller import Request
from .models import ServiceGroup, ServiceGroupResource, decode_service_group
from .servicegroup import (
    create_service_group,
    delete_service_group,
    update_service_group,
)
from .tasks import nonblocking

__all__ = [
    'setup',
]

log = logging.getLogger(__name__)


def setup(manager):
    """Register the informers and controllers of the operator with the
    given manager."""
    settings = manager.settings

    manager.informer(ServiceGroupResource).transform(decode_service_group)
    manager.informer(Pod, labels={records.MANAGED_LABEL: 'true'})

    groups = manager.controller(ServiceGroupResource)

    @groups.on_create
    async def service_group_created(client, event):
        if not isinstance(event.obj, ServiceGroup):
            log.error('not a service group: %r', event.obj)
            return
        await create_service_group(
            client, event.obj, default_group=settings.default_group
        )

    @groups.on_update
    async def service_group_updated(client, event):
        if not isinstance(event.new, ServiceGroup):
            log.error('not a service group: %r', event.new)
            return
        await update_service_group(client, event.old, event.new)

    @groups.on_delete
    async def service_group_deleted(client, event):
        if not isinstance(event.obj, ServiceGroup):
            log.error('not a service group: %r', event.obj)
            return
        await delete_service_group(client, event.obj)

    pods = manager.controller(Pod)

    @pods.key
    @nonblocking
    def service_group_request(event):
        sg_name = leader.service_group_name(event.obj)
        if sg_name is None:
            log.error('pod %r has no %s label', event.obj, records.GROUP_LABEL)
            return None
        return Request(
            ServiceGroupResource, sg_name, namespace=event.obj.metadata.namespace
        )

    @pods.predicate
    @nonblocking
    def managed(event):
        return leader.is_managed(event.obj)

    # Creates are seen at startup and after a resync for pods which were
    # already running, so they are treated just like updates.
    @pods.on_create
    @pods.on_update
    async def pod_changed(client, event):
        if leader.is_running(event.obj):
            await leader.pod_running(client, event.obj)

    @pods.on_delete
    async def pod_deleted(client, event):
        await leader.pod_deleted(
            client,
            event.obj,
            clear_when_empty=settings.clear_leader_when_empty,
        )

    return manager
