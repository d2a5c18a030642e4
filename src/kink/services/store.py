"""Kubernetes-backed store for control planes, clusters, machines and credentials.

Every call carries the configured request timeout, and every failure leaves
this module as one of the types in :mod:`kink.errors`.
"""

import base64
import logging

import kubernetes
import urllib3
from kubernetes.client.exceptions import ApiException

from kink.errors import ConflictError, NotFoundError, TransientError
from kink.models.cluster import CLUSTER_GROUP, CLUSTER_PLURAL, CLUSTER_VERSION, Cluster
from kink.models.controlplane import (
    CONTROL_PLANE_GROUP,
    CONTROL_PLANE_PLURAL,
    CONTROL_PLANE_VERSION,
    KinkControlPlane,
)
from kink.models.credential import Credential
from kink.models.infrastructure import (
    CLUSTER_NAME_LABEL,
    INFRASTRUCTURE_GROUP,
    MACHINE_PLURAL,
    MACHINE_VERSION,
    KinkMachine,
)
from kink.models.workload import Pod, Service

logger = logging.getLogger(__name__)


def translate_api_error(e, what):
    """Map an ApiException onto the operator's error taxonomy."""
    if e.status == 404:
        return NotFoundError(f"{what} not found")
    if e.status == 409:
        return ConflictError(f"conflict on {what}: {e.reason}")
    return TransientError(f"failed to access {what}: {e.status} {e.reason}")


class KubeStore:
    """Thin typed wrapper around the Kubernetes API."""

    def __init__(self, custom_api=None, core_api=None, request_timeout=30.0):
        self.custom_api = custom_api or kubernetes.client.CustomObjectsApi()
        self.core_api = core_api or kubernetes.client.CoreV1Api()
        self.request_timeout = request_timeout
        self._serializer = kubernetes.client.ApiClient()

    def _call(self, what, fn, *args, **kwargs):
        try:
            return fn(*args, _request_timeout=self.request_timeout, **kwargs)
        except ApiException as e:
            raise translate_api_error(e, what) from e
        except urllib3.exceptions.HTTPError as e:
            raise TransientError(f"failed to reach API server for {what}: {e}") from e

    # KinkControlPlane

    def get_control_plane(self, namespace, name):
        obj = self._call(
            f"KinkControlPlane {namespace}/{name}",
            self.custom_api.get_namespaced_custom_object,
            CONTROL_PLANE_GROUP,
            CONTROL_PLANE_VERSION,
            namespace,
            CONTROL_PLANE_PLURAL,
            name,
        )
        return KinkControlPlane.model_validate(obj)

    def update_control_plane_status(self, kcp):
        """Replace the status subresource, gated on ``metadata.resourceVersion``."""
        body = kcp.to_body()
        obj = self._call(
            f"KinkControlPlane {kcp.key} status",
            self.custom_api.replace_namespaced_custom_object_status,
            CONTROL_PLANE_GROUP,
            CONTROL_PLANE_VERSION,
            kcp.metadata.namespace,
            CONTROL_PLANE_PLURAL,
            kcp.metadata.name,
            body,
        )
        return KinkControlPlane.model_validate(obj)

    # Cluster API Cluster

    def get_cluster(self, namespace, name):
        obj = self._call(
            f"Cluster {namespace}/{name}",
            self.custom_api.get_namespaced_custom_object,
            CLUSTER_GROUP,
            CLUSTER_VERSION,
            namespace,
            CLUSTER_PLURAL,
            name,
        )
        return Cluster.model_validate(obj)

    # KinkMachine

    def list_machines(self, namespace, cluster_name):
        result = self._call(
            f"KinkMachines of cluster {namespace}/{cluster_name}",
            self.custom_api.list_namespaced_custom_object,
            INFRASTRUCTURE_GROUP,
            MACHINE_VERSION,
            namespace,
            MACHINE_PLURAL,
            label_selector=f"{CLUSTER_NAME_LABEL}={cluster_name}",
        )
        return [KinkMachine.model_validate(item) for item in result.get("items", [])]

    def create_machine(self, machine):
        obj = self._call(
            f"KinkMachine {machine.metadata.namespace}/{machine.metadata.name}",
            self.custom_api.create_namespaced_custom_object,
            INFRASTRUCTURE_GROUP,
            MACHINE_VERSION,
            machine.metadata.namespace,
            MACHINE_PLURAL,
            machine.to_body(),
        )
        return KinkMachine.model_validate(obj)

    def get_machine(self, namespace, name):
        obj = self._call(
            f"KinkMachine {namespace}/{name}",
            self.custom_api.get_namespaced_custom_object,
            INFRASTRUCTURE_GROUP,
            MACHINE_VERSION,
            namespace,
            MACHINE_PLURAL,
            name,
        )
        return KinkMachine.model_validate(obj)

    def update_machine_status(self, machine):
        """Replace the status subresource, gated on ``metadata.resourceVersion``."""
        obj = self._call(
            f"KinkMachine {machine.key} status",
            self.custom_api.replace_namespaced_custom_object_status,
            INFRASTRUCTURE_GROUP,
            MACHINE_VERSION,
            machine.metadata.namespace,
            MACHINE_PLURAL,
            machine.metadata.name,
            machine.to_body(),
        )
        return KinkMachine.model_validate(obj)

    def delete_machine(self, namespace, name):
        self._call(
            f"KinkMachine {namespace}/{name}",
            self.custom_api.delete_namespaced_custom_object,
            INFRASTRUCTURE_GROUP,
            MACHINE_VERSION,
            namespace,
            MACHINE_PLURAL,
            name,
        )

    # Credentials (Secrets)

    def _to_credential(self, secret):
        raw = self._serializer.sanitize_for_serialization(secret)
        data = {
            key: base64.b64decode(value).decode()
            for key, value in (raw.get("data") or {}).items()
        }
        fields = {"metadata": raw.get("metadata", {}), "data": data}
        if raw.get("type"):
            fields["type"] = raw["type"]
        return Credential.model_validate(fields)

    def get_credential(self, namespace, name):
        secret = self._call(
            f"Secret {namespace}/{name}",
            self.core_api.read_namespaced_secret,
            name,
            namespace,
        )
        return self._to_credential(secret)

    def create_credential(self, credential):
        body = credential.to_body()
        body["apiVersion"] = "v1"
        body["kind"] = "Secret"
        body["data"] = {
            key: base64.b64encode(value.encode()).decode()
            for key, value in credential.data.items()
        }
        secret = self._call(
            f"Secret {credential.metadata.namespace}/{credential.metadata.name}",
            self.core_api.create_namespaced_secret,
            credential.metadata.namespace,
            body,
        )
        return self._to_credential(secret)

    def list_credentials(self, namespace, cluster_name):
        result = self._call(
            f"Secrets of cluster {namespace}/{cluster_name}",
            self.core_api.list_namespaced_secret,
            namespace,
            label_selector=f"{CLUSTER_NAME_LABEL}={cluster_name}",
        )
        return [self._to_credential(item) for item in result.items]

    def delete_credential(self, namespace, name):
        self._call(
            f"Secret {namespace}/{name}",
            self.core_api.delete_namespaced_secret,
            name,
            namespace,
        )

    # Pods and Services of a control plane replica

    def list_pods(self, namespace, cluster_name):
        result = self._call(
            f"Pods of cluster {namespace}/{cluster_name}",
            self.core_api.list_namespaced_pod,
            namespace,
            label_selector=f"{CLUSTER_NAME_LABEL}={cluster_name}",
        )
        return [
            Pod.model_validate(self._serializer.sanitize_for_serialization(item))
            for item in result.items
        ]

    def create_pod(self, pod):
        created = self._call(
            f"Pod {pod.metadata.namespace}/{pod.metadata.name}",
            self.core_api.create_namespaced_pod,
            pod.metadata.namespace,
            pod.to_body(),
        )
        return Pod.model_validate(self._serializer.sanitize_for_serialization(created))

    def list_services(self, namespace, cluster_name):
        result = self._call(
            f"Services of cluster {namespace}/{cluster_name}",
            self.core_api.list_namespaced_service,
            namespace,
            label_selector=f"{CLUSTER_NAME_LABEL}={cluster_name}",
        )
        return [
            Service.model_validate(self._serializer.sanitize_for_serialization(item))
            for item in result.items
        ]

    def create_service(self, service):
        created = self._call(
            f"Service {service.metadata.namespace}/{service.metadata.name}",
            self.core_api.create_namespaced_service,
            service.metadata.namespace,
            service.to_body(),
        )
        return Service.model_validate(self._serializer.sanitize_for_serialization(created))
