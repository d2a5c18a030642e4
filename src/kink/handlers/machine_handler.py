"""Kopf handlers that feed KinkMachine keys into the machine work queue."""

import logging

import kopf

from kink.models.infrastructure import (
    CLUSTER_NAME_LABEL,
    INFRASTRUCTURE_GROUP,
    MACHINE_KIND,
    MACHINE_PLURAL,
    MACHINE_VERSION,
)
from kink.models.workload import ROLE_LABEL
from kink.plugins.registry import PluginRegistry
from kink.workqueue import object_key

logger = logging.getLogger(__name__)


def _plugin():
    return PluginRegistry().get_plugin("infrastructure")


def enqueue(key):
    plugin = _plugin()
    if plugin is None or plugin.queue is None:
        logger.warning(f"KinkMachine controller not running, dropping event for {key}")
        return
    plugin.queue.add(key)


def machine_keys_for_workload(meta, namespace):
    """Key of the KinkMachine controlling a role Pod or Service."""
    for ref in meta.get("ownerReferences") or []:
        if ref.get("controller") and ref.get("kind") == MACHINE_KIND:
            return [object_key(namespace, ref["name"])]
    return []


@kopf.on.event(
    INFRASTRUCTURE_GROUP,
    MACHINE_VERSION,
    MACHINE_PLURAL,
    labels={CLUSTER_NAME_LABEL: kopf.PRESENT},
)
async def kink_machine_event(name, namespace, **kwargs):
    enqueue(object_key(namespace, name))


@kopf.on.event("v1", "pods", labels={ROLE_LABEL: kopf.PRESENT})
async def role_pod_event(meta, namespace, **kwargs):
    for key in machine_keys_for_workload(meta, namespace):
        enqueue(key)


@kopf.on.event("v1", "services", labels={ROLE_LABEL: kopf.PRESENT})
async def role_service_event(meta, namespace, **kwargs):
    for key in machine_keys_for_workload(meta, namespace):
        enqueue(key)
