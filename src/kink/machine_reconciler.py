"""Level-triggered reconciliation of KinkMachine objects.

A KinkMachine is one control plane replica. A pass creates whichever of its
role pods and the cluster's etcd Service are missing, then reports the
machine ready once every pod it controls is running. The KinkControlPlane
reconciler counts ready machines from that status.
"""

import logging

from kink.errors import ConflictError, KinkError, NotFoundError, TransientError
from kink.reconciler import ReconcileResult, log_event
from kink.services.machine_manager import generate_name
from kink.services.templates import DEFAULT_IMAGE_REGISTRY, pod_templates, service_templates
from kink.workqueue import split_key

logger = logging.getLogger(__name__)

POD_MISSING_REASON = "PodMissing"
POD_NOT_RUNNING_REASON = "PodNotRunning"


def pod_readiness(pods, roles):
    """Readiness of a machine from the pods it controls.

    Returns:
        tuple: ``(ready, failure_reason, failure_message)``
    """
    present = {pod.role for pod in pods}
    missing = sorted(role for role in roles if role not in present)
    if missing:
        return False, POD_MISSING_REASON, f"No {', '.join(missing)} pod is running yet"

    for pod in sorted(pods, key=lambda p: p.metadata.name):
        if not pod.running:
            return (
                False,
                POD_NOT_RUNNING_REASON,
                f"Pod {pod.metadata.namespace}/{pod.metadata.name} is not running "
                f"(phase {pod.status.phase or 'Unknown'})",
            )
    return True, None, None


class MachineReconciler:
    """Keeps the pods and services of one KinkMachine in place."""

    def __init__(
        self,
        store,
        image_registry=DEFAULT_IMAGE_REGISTRY,
        name_generator=generate_name,
        recorder=None,
    ):
        self.store = store
        self.image_registry = image_registry
        self.name_generator = name_generator
        self.recorder = recorder or log_event

    def reconcile(self, key):
        namespace, name = split_key(key)

        try:
            machine = self.store.get_machine(namespace, name)
        except NotFoundError:
            logger.debug(f"KinkMachine {key} is gone, nothing to do")
            return ReconcileResult()
        except TransientError as e:
            logger.warning(f"Failed to get KinkMachine {key}: {e}")
            return ReconcileResult(requeue=True)

        if machine.metadata.deletionTimestamp is not None:
            return ReconcileResult()

        if not machine.cluster_name:
            logger.warning(f"KinkMachine {key} carries no cluster label")
            return ReconcileResult(requeue=True)

        try:
            cluster = self.store.get_cluster(namespace, machine.cluster_name)
        except (NotFoundError, TransientError) as e:
            logger.error(f"Failed to get cluster for KinkMachine {key}: {e}")
            return ReconcileResult(requeue=True)

        templates = pod_templates(cluster, machine, self.image_registry, self.name_generator)
        try:
            pods, created, failed = self.lookup_or_create_pods(cluster, machine, templates)
            failed += self.lookup_or_create_services(cluster, machine)
        except TransientError as e:
            logger.warning(f"Failed to list workloads of KinkMachine {key}: {e}")
            return ReconcileResult(requeue=True)
        if created:
            self.recorder(machine, "PodsCreated", f"Created {', '.join(created)}")

        before = machine.status.model_dump()
        ready, reason, message = pod_readiness(pods, templates)
        ordered = sorted(pods, key=lambda p: p.metadata.name)
        machine.status.pods = [pod.reference() for pod in ordered]
        machine.status.ready = ready
        machine.status.failureReason = reason
        machine.status.failureMessage = message

        if machine.status.model_dump() != before:
            try:
                self.store.update_machine_status(machine)
            except NotFoundError:
                logger.debug(f"KinkMachine {key} deleted during reconciliation")
                return ReconcileResult()
            except TransientError as e:
                logger.warning(f"Failed to update status of KinkMachine {key}: {e}")
                return ReconcileResult(requeue=True)
            logger.info(f"KinkMachine {key} ready={ready}")

        return ReconcileResult(requeue=bool(failed))

    def owned(self, objects, machine):
        return [obj for obj in objects if obj.metadata.is_controlled_by(machine.metadata)]

    def lookup_or_create_pods(self, cluster, machine, templates):
        """Create the role pods this machine does not control yet.

        A failed create is logged and reported back; the other roles still go ahead.

        Returns:
            tuple: ``(pods, created_names, failed_roles)``
        """
        pods = self.owned(self.store.list_pods(cluster.namespace, cluster.name), machine)
        present = {pod.role for pod in pods}
        created, failed = [], []

        for role, template in templates.items():
            if role in present:
                continue
            try:
                pod = self.store.create_pod(template)
            except KinkError as e:
                logger.warning(f"Failed to create {role} pod for KinkMachine {machine.key}: {e}")
                failed.append(role)
                continue
            logger.info(f"Created {role} pod {pod.metadata.name} for KinkMachine {machine.key}")
            pods.append(pod)
            created.append(pod.metadata.name)

        return pods, created, failed

    def lookup_or_create_services(self, cluster, machine):
        """Create the role services nothing provides yet.

        The etcd Service is shared by every machine of the cluster, so a
        Service that already exists under another owner counts as present.

        Returns:
            list: roles whose service could not be created
        """
        services = self.store.list_services(cluster.namespace, cluster.name)
        present = {service.metadata.name for service in services}
        failed = []

        for role, template in service_templates(cluster, machine).items():
            if template.metadata.name in present:
                continue
            try:
                self.store.create_service(template)
            except ConflictError:
                logger.debug(f"Service {template.metadata.name} already exists")
                continue
            except KinkError as e:
                logger.warning(
                    f"Failed to create {role} service for KinkMachine {machine.key}: {e}"
                )
                failed.append(role)
                continue
            logger.info(f"Created service {template.metadata.name} for KinkMachine {machine.key}")

        return failed
