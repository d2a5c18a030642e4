from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from kink.errors import ConflictError, NotFoundError
from kink.models.cluster import Cluster
from kink.models.controlplane import (
    CONTROL_PLANE_GROUP,
    CONTROL_PLANE_KIND,
    CONTROL_PLANE_VERSION,
    KinkControlPlane,
)
from kink.models.infrastructure import CLUSTER_NAME_LABEL

NAMESPACE = "default"
CLUSTER_NAME = "tenant"
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


# --------- Test doubles ----------


class FakeStore:
    """In-memory stand-in for KubeStore.

    Mimics what the reconciler relies on from the API server: resourceVersion
    gated status writes, 404/409 on missing/duplicate names, uid and
    creationTimestamp assignment. ``fail(method, exc)`` makes the next call(s)
    of a method raise.
    """

    def __init__(self):
        self.control_planes = {}
        self.clusters = {}
        self.machines = {}
        self.credentials = {}
        self.pods = {}
        self.services = {}
        self.calls = Counter()
        self._failures = defaultdict(list)
        self._uids = count(1)
        self._versions = count(1)
        self._clock = count(0)

    def fail(self, method, exc, times=1):
        self._failures[method].extend([exc] * times)

    def _enter(self, method):
        self.calls[method] += 1
        if self._failures[method]:
            raise self._failures[method].pop(0)

    def _stamp(self, obj):
        obj.metadata.uid = obj.metadata.uid or f"uid-{next(self._uids)}"
        obj.metadata.resourceVersion = str(next(self._versions))
        if obj.metadata.creationTimestamp is None:
            obj.metadata.creationTimestamp = T0 + timedelta(seconds=next(self._clock))
        return obj

    # seeding

    def put_control_plane(self, kcp):
        kcp = self._stamp(kcp.model_copy(deep=True))
        self.control_planes[(kcp.metadata.namespace, kcp.metadata.name)] = kcp
        return kcp.model_copy(deep=True)

    def put_cluster(self, cluster):
        self.clusters[(cluster.namespace, cluster.name)] = cluster.model_copy(deep=True)

    def put_machine(self, machine):
        machine = self._stamp(machine.model_copy(deep=True))
        self.machines[(machine.metadata.namespace, machine.metadata.name)] = machine
        return machine

    def bump_control_plane(self, namespace, name):
        """Simulate a concurrent writer changing the stored object."""
        stored = self.control_planes[(namespace, name)]
        stored.metadata.resourceVersion = str(next(self._versions))

    def set_machine_ready(self, name, ready=True, namespace=NAMESPACE):
        self.machines[(namespace, name)].status.ready = ready

    def set_pod_phase(self, name, phase, namespace=NAMESPACE):
        self.pods[(namespace, name)].status.phase = phase

    # KubeStore interface

    def get_control_plane(self, namespace, name):
        self._enter("get_control_plane")
        try:
            return self.control_planes[(namespace, name)].model_copy(deep=True)
        except KeyError:
            raise NotFoundError(f"KinkControlPlane {namespace}/{name} not found")

    def update_control_plane_status(self, kcp):
        self._enter("update_control_plane_status")
        key = (kcp.metadata.namespace, kcp.metadata.name)
        stored = self.control_planes.get(key)
        if stored is None:
            raise NotFoundError(f"KinkControlPlane {kcp.key} not found")
        if stored.metadata.resourceVersion != kcp.metadata.resourceVersion:
            raise ConflictError(f"conflict on KinkControlPlane {kcp.key}")
        stored.status = kcp.status.model_copy(deep=True)
        stored.metadata.resourceVersion = str(next(self._versions))
        return stored.model_copy(deep=True)

    def get_cluster(self, namespace, name):
        self._enter("get_cluster")
        try:
            return self.clusters[(namespace, name)].model_copy(deep=True)
        except KeyError:
            raise NotFoundError(f"Cluster {namespace}/{name} not found")

    def list_machines(self, namespace, cluster_name):
        self._enter("list_machines")
        return [
            m.model_copy(deep=True)
            for (ns, _), m in self.machines.items()
            if ns == namespace and m.metadata.labels.get(CLUSTER_NAME_LABEL) == cluster_name
        ]

    def create_machine(self, machine):
        self._enter("create_machine")
        key = (machine.metadata.namespace, machine.metadata.name)
        if key in self.machines:
            raise ConflictError(f"KinkMachine {key} already exists")
        return self.put_machine(machine).model_copy(deep=True)

    def get_machine(self, namespace, name):
        self._enter("get_machine")
        try:
            return self.machines[(namespace, name)].model_copy(deep=True)
        except KeyError:
            raise NotFoundError(f"KinkMachine {namespace}/{name} not found")

    def update_machine_status(self, machine):
        self._enter("update_machine_status")
        stored = self.machines.get((machine.metadata.namespace, machine.metadata.name))
        if stored is None:
            raise NotFoundError(f"KinkMachine {machine.key} not found")
        if stored.metadata.resourceVersion != machine.metadata.resourceVersion:
            raise ConflictError(f"conflict on KinkMachine {machine.key}")
        stored.status = machine.status.model_copy(deep=True)
        stored.metadata.resourceVersion = str(next(self._versions))
        return stored.model_copy(deep=True)

    def delete_machine(self, namespace, name):
        self._enter("delete_machine")
        if self.machines.pop((namespace, name), None) is None:
            raise NotFoundError(f"KinkMachine {namespace}/{name} not found")

    def get_credential(self, namespace, name):
        self._enter("get_credential")
        try:
            return self.credentials[(namespace, name)].model_copy(deep=True)
        except KeyError:
            raise NotFoundError(f"Secret {namespace}/{name} not found")

    def create_credential(self, credential):
        self._enter("create_credential")
        key = (credential.metadata.namespace, credential.metadata.name)
        if key in self.credentials:
            raise ConflictError(f"Secret {key} already exists")
        stored = self._stamp(credential.model_copy(deep=True))
        self.credentials[key] = stored
        return stored.model_copy(deep=True)

    def list_credentials(self, namespace, cluster_name):
        self._enter("list_credentials")
        return [
            c.model_copy(deep=True)
            for (ns, _), c in self.credentials.items()
            if ns == namespace and c.metadata.labels.get(CLUSTER_NAME_LABEL) == cluster_name
        ]

    def delete_credential(self, namespace, name):
        self._enter("delete_credential")
        if self.credentials.pop((namespace, name), None) is None:
            raise NotFoundError(f"Secret {namespace}/{name} not found")

    def _list_labelled(self, objects, method, namespace, cluster_name):
        self._enter(method)
        return [
            obj.model_copy(deep=True)
            for (ns, _), obj in objects.items()
            if ns == namespace and obj.metadata.labels.get(CLUSTER_NAME_LABEL) == cluster_name
        ]

    def _create(self, objects, method, obj):
        self._enter(method)
        key = (obj.metadata.namespace, obj.metadata.name)
        if key in objects:
            raise ConflictError(f"{obj.kind} {key} already exists")
        stored = self._stamp(obj.model_copy(deep=True))
        objects[key] = stored
        return stored.model_copy(deep=True)

    def list_pods(self, namespace, cluster_name):
        return self._list_labelled(self.pods, "list_pods", namespace, cluster_name)

    def create_pod(self, pod):
        return self._create(self.pods, "create_pod", pod)

    def list_services(self, namespace, cluster_name):
        return self._list_labelled(self.services, "list_services", namespace, cluster_name)

    def create_service(self, service):
        return self._create(self.services, "create_service", service)

    def credential_names(self):
        return sorted(name for _, name in self.credentials)


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, kcp, reason, message, warning=False):
        self.events.append((reason, message, warning))

    def reasons(self):
        return [reason for reason, _, _ in self.events]


def make_control_plane(name="tenant-cp", replicas=1, cluster_name=CLUSTER_NAME, **spec):
    return KinkControlPlane.model_validate(
        {
            "apiVersion": f"{CONTROL_PLANE_GROUP}/{CONTROL_PLANE_VERSION}",
            "kind": CONTROL_PLANE_KIND,
            "metadata": {"name": name, "namespace": NAMESPACE, "generation": 1},
            "spec": {"replicas": replicas, "clusterName": cluster_name, "version": "v1.27.3", **spec},
        }
    )


def make_cluster(
    name=CLUSTER_NAME,
    infrastructure_ready=True,
    host="10.0.0.10",
    port=6443,
    services=None,
    service_domain=None,
):
    network = {}
    if services:
        network["services"] = {"cidrBlocks": services}
    if service_domain:
        network["serviceDomain"] = service_domain
    return Cluster.model_validate(
        {
            "apiVersion": "cluster.x-k8s.io/v1beta1",
            "kind": "Cluster",
            "metadata": {"name": name, "namespace": NAMESPACE, "uid": "cluster-uid"},
            "spec": {
                "controlPlaneEndpoint": {"host": host, "port": port},
                "clusterNetwork": network,
                "controlPlaneRef": {"kind": CONTROL_PLANE_KIND, "name": "tenant-cp"},
            },
            "status": {"infrastructureReady": infrastructure_ready},
        }
    )


# --------- Fixtures ----------


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def cluster(store):
    cluster = make_cluster()
    store.put_cluster(cluster)
    return cluster


@pytest.fixture
def kcp(store):
    """A stored one-replica control plane; carries the uid the store assigned."""
    return store.put_control_plane(make_control_plane())
