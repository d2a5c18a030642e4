"""KinkCluster handler: the host cluster is the infrastructure, so it is ready at once."""

import kopf

from kink.models.infrastructure import (
    INFRASTRUCTURE_GROUP,
    KINK_CLUSTER_PLURAL,
    KINK_CLUSTER_VERSION,
)


@kopf.on.create(INFRASTRUCTURE_GROUP, KINK_CLUSTER_VERSION, KINK_CLUSTER_PLURAL)
@kopf.on.update(INFRASTRUCTURE_GROUP, KINK_CLUSTER_VERSION, KINK_CLUSTER_PLURAL)
@kopf.on.resume(INFRASTRUCTURE_GROUP, KINK_CLUSTER_VERSION, KINK_CLUSTER_PLURAL)
def kink_cluster_ready(body, status, patch, **kwargs):
    """Mark the KinkCluster infrastructure ready."""
    if status.get("ready"):
        return

    patch.status["ready"] = True
    patch.status["failureReason"] = None
    patch.status["failureMessage"] = None
    kopf.info(body, reason="InfrastructureReady", message="KinkCluster is ready")
