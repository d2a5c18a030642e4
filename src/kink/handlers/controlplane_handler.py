"""Kopf handlers that feed KinkControlPlane keys into the work queue.

Reconciliation itself happens in :mod:`kink.reconciler`; these handlers only
translate watch events into ``namespace/name`` keys.
"""

import logging

import kopf

from kink.errors import KinkError
from kink.models.cluster import CLUSTER_GROUP, CLUSTER_PLURAL, CLUSTER_VERSION
from kink.models.controlplane import (
    CONTROL_PLANE_GROUP,
    CONTROL_PLANE_KIND,
    CONTROL_PLANE_PLURAL,
    CONTROL_PLANE_VERSION,
    KinkControlPlane,
)
from kink.models.infrastructure import (
    CLUSTER_NAME_LABEL,
    INFRASTRUCTURE_GROUP,
    MACHINE_PLURAL,
    MACHINE_VERSION,
)
from kink.plugins.registry import PluginRegistry
from kink.services.ownership import cascade_delete
from kink.workqueue import object_key

logger = logging.getLogger(__name__)


def _plugin():
    return PluginRegistry().get_plugin("controlplane")


def enqueue(key):
    plugin = _plugin()
    if plugin is None or plugin.queue is None:
        logger.warning(f"Control plane controller not running, dropping event for {key}")
        return
    plugin.queue.add(key)


def control_plane_keys_for_cluster(spec, namespace):
    """Keys of the KinkControlPlane a Cluster points at through controlPlaneRef."""
    ref = spec.get("controlPlaneRef") or {}
    if ref.get("kind") != CONTROL_PLANE_KIND or not ref.get("name"):
        return []
    return [object_key(ref.get("namespace") or namespace, ref["name"])]


def control_plane_keys_for_machine(meta, namespace):
    """Key of the KinkControlPlane controlling a KinkMachine."""
    for ref in meta.get("ownerReferences") or []:
        if ref.get("controller") and ref.get("kind") == CONTROL_PLANE_KIND:
            return [object_key(namespace, ref["name"])]
    return []


@kopf.on.event(CONTROL_PLANE_GROUP, CONTROL_PLANE_VERSION, CONTROL_PLANE_PLURAL)
async def control_plane_event(name, namespace, **kwargs):
    enqueue(object_key(namespace, name))


@kopf.on.event(CLUSTER_GROUP, CLUSTER_VERSION, CLUSTER_PLURAL)
async def cluster_event(spec, namespace, **kwargs):
    for key in control_plane_keys_for_cluster(spec, namespace):
        enqueue(key)


@kopf.on.event(
    INFRASTRUCTURE_GROUP,
    MACHINE_VERSION,
    MACHINE_PLURAL,
    labels={CLUSTER_NAME_LABEL: kopf.PRESENT},
)
async def machine_event(meta, namespace, **kwargs):
    for key in control_plane_keys_for_machine(meta, namespace):
        enqueue(key)


@kopf.on.delete(CONTROL_PLANE_GROUP, CONTROL_PLANE_VERSION, CONTROL_PLANE_PLURAL)
def control_plane_delete(body, **kwargs):
    """Remove everything the control plane owns before the object goes away."""
    kcp = KinkControlPlane.model_validate(dict(body))
    if not kcp.spec.clusterName:
        return

    try:
        deleted = cascade_delete(_plugin().store, kcp, kcp.spec.clusterName)
    except KinkError as e:
        raise kopf.TemporaryError(f"Failed to clean up {kcp.key}: {e}", delay=15)

    kopf.info(
        body,
        reason="ControlPlaneDeleted",
        message=f"Removed {deleted} owned machines and credentials",
    )
