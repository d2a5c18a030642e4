"""Level-triggered reconciliation of KinkControlPlane objects.

One pass walks the same checks every time, from the top:

1. the KinkControlPlane exists and is not being deleted
2. its Cluster API cluster can be read
3. the cluster infrastructure is ready
4. the cluster has a control plane endpoint
5. credentials are provisioned
6. the machines match the replica count
7. the aggregated status is written back

Each step is idempotent, so an interrupted pass is simply repeated.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from kink.errors import (
    CatalogError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    TransientError,
)
from kink.services.credential_manager import CredentialManager
from kink.services.machine_manager import MachineManager
from kink.services.status import aggregate
from kink.workqueue import split_key

logger = logging.getLogger(__name__)

CATALOG_FAILURE_REASON = CatalogError.reason


@dataclass
class ReconcileResult:
    requeue: bool = False
    requeue_after: Optional[float] = None


def log_event(kcp, reason, message, warning=False):
    """Default recorder: events go to the log when nothing posts them."""
    logger.debug(f"Event {reason} on {kcp.key}: {message}")


class ControlPlaneReconciler:
    """Drives one KinkControlPlane towards its declared state."""

    def __init__(
        self,
        store,
        machine_manager=None,
        credential_manager_cls=CredentialManager,
        recorder=None,
        status_retries=3,
    ):
        self.store = store
        self.machine_manager = machine_manager or MachineManager(store)
        self.credential_manager_cls = credential_manager_cls
        self.recorder = recorder or log_event
        self.status_retries = status_retries

    def reconcile(self, key):
        namespace, name = split_key(key)

        try:
            kcp = self.store.get_control_plane(namespace, name)
        except NotFoundError:
            logger.debug(f"KinkControlPlane {key} is gone, nothing to do")
            return ReconcileResult()
        except TransientError as e:
            logger.warning(f"Failed to get KinkControlPlane {key}: {e}")
            return ReconcileResult(requeue=True)

        if kcp.metadata.deletionTimestamp is not None:
            logger.debug(f"KinkControlPlane {key} is being deleted, leaving it to the delete handler")
            return ReconcileResult()

        if not kcp.spec.clusterName:
            logger.warning(f"KinkControlPlane {key} does not name a cluster")
            return ReconcileResult(requeue=True)

        try:
            cluster = self.store.get_cluster(namespace, kcp.spec.clusterName)
        except (NotFoundError, TransientError) as e:
            logger.error(f"Failed to get cluster for KinkControlPlane {key}: {e}")
            return ReconcileResult(requeue=True)

        if not cluster.status.infrastructureReady:
            logger.info(f"Waiting for cluster {namespace}/{cluster.name} infrastructure ready")
            return ReconcileResult()

        if not cluster.spec.controlPlaneEndpoint.is_valid():
            logger.info(
                f"Cluster {namespace}/{cluster.name} does not yet have a ControlPlaneEndpoint defined"
            )
            return ReconcileResult()

        credentials = self.credential_manager_cls(self.store, cluster, kcp)
        try:
            created = credentials.provision()
        except ConfigurationError as e:
            logger.error(f"Cannot provision credentials for KinkControlPlane {key}: {e}")
            self.recorder(kcp, e.reason, str(e), warning=True)
            return self._report_terminal(kcp, e.reason, str(e))
        except TransientError as e:
            logger.warning(f"Failed to provision credentials for KinkControlPlane {key}: {e}")
            return ReconcileResult(requeue=True)
        if created:
            self.recorder(kcp, "CredentialsCreated", f"Created {', '.join(created)}")

        try:
            converged = self.machine_manager.converge(kcp.spec.replicas, kcp, cluster)
        except TransientError as e:
            logger.warning(f"Failed to converge machines of KinkControlPlane {key}: {e}")
            return ReconcileResult(requeue=True)
        if converged.changed:
            self.recorder(
                kcp,
                "MachinesScaled",
                f"Created {len(converged.created)} and deleted {len(converged.deleted)} "
                f"machines, {len(converged.instances)}/{kcp.spec.replicas} present",
            )

        def apply_delta(current):
            aggregate(converged.instances, current).apply(current.status)

        try:
            self._publish_status(kcp, apply_delta)
        except NotFoundError:
            logger.debug(f"KinkControlPlane {key} deleted during reconciliation")
            return ReconcileResult()
        except TransientError as e:
            logger.warning(f"Failed to update status of KinkControlPlane {key}: {e}")
            return ReconcileResult(requeue=True)

        if converged.failed:
            return ReconcileResult(requeue=True)
        return ReconcileResult()

    def _report_terminal(self, kcp, reason, message):
        def mark_failed(current):
            current.status.failureReason = reason
            current.status.failureMessage = message
            current.status.ready = False

        try:
            self._publish_status(kcp, mark_failed)
        except NotFoundError:
            return ReconcileResult()
        except TransientError as e:
            logger.warning(f"Failed to record failure on KinkControlPlane {kcp.key}: {e}")
            return ReconcileResult(requeue=True)
        return ReconcileResult()

    def _publish_status(self, kcp, mutate):
        """Apply ``mutate`` and write the status, re-reading on write conflicts."""
        current = kcp
        for attempt in range(1, self.status_retries + 1):
            mutate(current)
            current.status.observedGeneration = current.metadata.generation
            try:
                return self.store.update_control_plane_status(current)
            except ConflictError:
                logger.info(
                    f"Status of KinkControlPlane {kcp.key} changed concurrently "
                    f"(attempt {attempt}/{self.status_retries})"
                )
                current = self.store.get_control_plane(
                    kcp.metadata.namespace, kcp.metadata.name
                )
        raise ConflictError(f"status of KinkControlPlane {kcp.key} kept conflicting")
