"""
Leader election and publication.

Each service group has one leader address, stored in its peer address
record, which new pods use to join the peer ring. The record is the only
state: it is read, a decision is made, and the new address is written
with the resourceVersion it was read with.

* A pod becoming Running is made leader if there is no leader yet, or the
  recorded leader is not a Running pod of the group anymore.
* If the leader pod is deleted, the Running pod with the lowest address
  takes over. If none is left, the record is cleared (configurable).
"""

import ipaddress
import logging

from lightkube.resources.apps_v1 import Deployment
from lightkube.resources.core_v1 import ConfigMap, Pod

from . import records

__all__ = [
    'address_order',
    'is_managed',
    'is_running',
    'pod_deleted',
    'pod_running',
    'running_pods',
    'select_leader',
    'service_group_name',
    'write_leader_address',
]

log = logging.getLogger(__name__)


RUNNING = 'Running'


def _labels(pod):
    if pod.metadata is None:
        return {}
    return pod.metadata.labels or {}


def is_managed(pod):
    return _labels(pod).get(records.MANAGED_LABEL) == 'true'


def service_group_name(pod):
    return _labels(pod).get(records.GROUP_LABEL)


def is_running(pod):
    return pod.status is not None and pod.status.phase == RUNNING


def pod_address(pod):
    if pod.status is None:
        return None
    return pod.status.podIP


def address_order(address):
    """Sort key for leader candidates: numeric IP order, IPv4 first.
    Anything that is not an IP address sorts last, lexically."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return (1, 0, 0, address)
    return (0, ip.version, int(ip), address)


def select_leader(addresses):
    """Deterministically pick the new leader out of the given addresses."""
    addresses = [address for address in addresses if address]
    if not addresses:
        return None
    return min(addresses, key=address_order)


async def running_pods(client, namespace, sg_name, address=None):
    """List the Running pods of a service group, optionally only those
    with the given address."""
    fields = {'status.phase': RUNNING}
    if address is not None:
        fields['status.podIP'] = address
    return await client.list(
        Pod,
        namespace=namespace,
        labels=records.pod_labels(sg_name),
        fields=fields,
    )


async def _get_record(client, namespace, sg_name):
    return await client.get(
        ConfigMap,
        name=records.config_map_name(sg_name),
        namespace=namespace,
    )


async def write_leader_address(client, record, sg_name, address):
    """Publish the given address in the record, unless it is already there.

    The Deployment is fetched to point the record's owner reference at it.
    Raises Conflict if the record was changed since it was read.
    """
    namespace = record.metadata.namespace
    if records.leader_address(record) == address:
        log.debug('%s/%s: leader is already %r', namespace, sg_name, address)
        return record
    deployment = await client.get(Deployment, name=sg_name, namespace=namespace)
    updated = records.with_leader_address(record, deployment, address)
    record = await client.update(updated)
    log.info('%s/%s: leader address is now %r', namespace, sg_name, address)
    return record


async def pod_running(client, pod):
    """Make the given Running pod the leader of its service group if the
    group has no live leader."""
    sg_name = service_group_name(pod)
    if sg_name is None:
        log.error('pod %r has no %s label', pod, records.GROUP_LABEL)
        return None
    if not is_running(pod):
        return None
    address = pod_address(pod)
    if not address:
        log.debug('pod %r has no address yet', pod)
        return None

    namespace = pod.metadata.namespace
    record = await _get_record(client, namespace, sg_name)
    current = records.leader_address(record)

    if current == address:
        return record

    if current:
        # Is the leader still running? If so, we don't need to do anything.
        if await running_pods(client, namespace, sg_name, address=current):
            log.debug('%s/%s: leader %r is alive', namespace, sg_name, current)
            return record
        log.info('%s/%s: leader %r is gone', namespace, sg_name, current)

    return await write_leader_address(client, record, sg_name, address)


async def pod_deleted(client, pod, clear_when_empty=True):
    """Elect a new leader if the given deleted pod was the leader."""
    sg_name = service_group_name(pod)
    if sg_name is None:
        log.error('pod %r has no %s label', pod, records.GROUP_LABEL)
        return None

    namespace = pod.metadata.namespace
    address = pod_address(pod)
    record = await _get_record(client, namespace, sg_name)
    current = records.leader_address(record)

    # The deleted pod was not the leader, so there's nothing to do.
    if not address or address != current:
        return record

    candidates = [
        pod_address(candidate)
        for candidate in await running_pods(client, namespace, sg_name)
        if pod_address(candidate) != address
    ]
    leader = select_leader(candidates)
    if leader is None:
        if not clear_when_empty:
            log.info('%s/%s: no running pods left, keeping stale leader %r',
                namespace, sg_name, current)
            return record
        log.info('%s/%s: no running pods left', namespace, sg_name)
        leader = ''

    return await write_leader_address(client, record, sg_name, leader)
