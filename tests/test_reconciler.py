import logging
from functools import partial

from conftest import NAMESPACE, T0, make_cluster, make_control_plane
from kink.errors import (
    ConflictError,
    InvalidClusterNetworkError,
    InvalidCredentialError,
    TransientError,
)
from kink.reconciler import CATALOG_FAILURE_REASON, ControlPlaneReconciler, ReconcileResult
from kink.services import pki
from kink.services.certificates import CertificateDefinition, build_credential, get_certs
from kink.services.credential_manager import CredentialManager
from kink.services.machine_manager import MachineManager

KEY = f"{NAMESPACE}/tenant-cp"


def stored_status(store):
    return store.control_planes[(NAMESPACE, "tenant-cp")].status


def owned_machines(store):
    return sorted(name for _, name in store.machines)


def test_missing_control_plane_is_ignored(store, recorder):
    reconciler = ControlPlaneReconciler(store, recorder=recorder)

    assert reconciler.reconcile(KEY) == ReconcileResult()
    assert store.calls["get_cluster"] == 0


def test_control_plane_without_cluster_name_requeues(store, recorder):
    store.put_control_plane(make_control_plane(cluster_name=""))

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result.requeue is True
    assert store.calls["get_cluster"] == 0


def test_missing_cluster_requeues(store, kcp, recorder):
    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result.requeue is True
    assert store.credentials == {}


def test_waits_for_infrastructure(store, kcp, recorder):
    store.put_cluster(make_cluster(infrastructure_ready=False))

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result == ReconcileResult()
    assert store.credentials == {}
    assert store.machines == {}
    assert store.calls["update_control_plane_status"] == 0


def test_waits_for_control_plane_endpoint(store, kcp, recorder):
    store.put_cluster(make_cluster(host="", port=0))

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result == ReconcileResult()
    assert store.credentials == {}
    assert store.machines == {}


def test_three_replicas_from_scratch(store, cluster, recorder):
    store.put_control_plane(make_control_plane(replicas=3))
    reconciler = ControlPlaneReconciler(store, recorder=recorder)

    result = reconciler.reconcile(KEY)

    assert result == ReconcileResult()
    assert len(store.credentials) == 7
    assert len(store.machines) == 3
    status = stored_status(store)
    assert status.readyReplicas == 0
    assert status.unavailableReplicas == 3
    assert status.ready is False
    assert status.initialized is False
    assert status.failureReason == "InsufficientReadyReplicas"
    assert status.observedGeneration == 1
    assert status.externalManagedControlPlane is True
    assert recorder.reasons() == ["CredentialsCreated", "MachinesScaled"]

    store.set_machine_ready(owned_machines(store)[0])
    reconciler.reconcile(KEY)

    status = stored_status(store)
    assert status.readyReplicas == 1
    assert status.unavailableReplicas == 2
    assert status.ready is True
    assert status.initialized is True
    assert status.failureReason is None
    assert status.version == "v1.27.3"
    assert store.calls["create_machine"] == 3
    assert store.calls["create_credential"] == 7
    assert recorder.reasons() == ["CredentialsCreated", "MachinesScaled"]


def test_zero_replicas_provisions_credentials_only(store, cluster, recorder):
    store.put_control_plane(make_control_plane(replicas=0))

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result == ReconcileResult()
    assert len(store.credentials) == 7
    assert store.machines == {}
    status = stored_status(store)
    assert status.ready is False
    assert status.initialized is False
    assert status.readyReplicas == 0


def test_scale_down_after_spec_change(store, cluster, recorder):
    store.put_control_plane(make_control_plane(replicas=3))
    reconciler = ControlPlaneReconciler(store, recorder=recorder)
    reconciler.reconcile(KEY)
    oldest = min(store.machines.values(), key=lambda m: m.metadata.creationTimestamp)

    store.control_planes[(NAMESPACE, "tenant-cp")].spec.replicas = 1
    reconciler.reconcile(KEY)

    assert owned_machines(store) == [oldest.metadata.name]
    assert stored_status(store).unavailableReplicas == 1


def test_initialized_survives_losing_all_ready_machines(store, kcp, cluster, recorder):
    reconciler = ControlPlaneReconciler(store, recorder=recorder)
    reconciler.reconcile(KEY)
    store.set_machine_ready(owned_machines(store)[0])
    reconciler.reconcile(KEY)
    assert stored_status(store).initialized is True

    store.set_machine_ready(owned_machines(store)[0], ready=False)
    reconciler.reconcile(KEY)

    status = stored_status(store)
    assert status.ready is False
    assert status.initialized is True


def test_invalid_catalog_is_terminal(store, kcp, cluster, recorder):
    catalog = get_certs() + [
        CertificateDefinition(
            name="etcd-client",
            ca_name="etcd-ca",
            config=pki.CertConfig(common_name="etcd-client", usages=[pki.CLIENT_AUTH]),
        )
    ]
    reconciler = ControlPlaneReconciler(
        store,
        credential_manager_cls=partial(CredentialManager, catalog=catalog),
        recorder=recorder,
    )

    result = reconciler.reconcile(KEY)

    assert result == ReconcileResult()
    assert store.credentials == {}
    assert store.machines == {}
    status = stored_status(store)
    assert status.failureReason == CATALOG_FAILURE_REASON
    assert "etcd-ca" in status.failureMessage
    assert status.ready is False
    assert recorder.events[0][0] == CATALOG_FAILURE_REASON
    assert recorder.events[0][2] is True


def test_credential_failure_requeues_before_machines(store, kcp, cluster, recorder):
    store.fail("create_credential", TransientError("apiserver unavailable"))

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result.requeue is True
    assert store.machines == {}
    assert store.calls["update_control_plane_status"] == 0


def test_partial_machine_failure_requeues_after_status(store, cluster, recorder):
    store.put_control_plane(make_control_plane(replicas=2))
    store.fail("create_machine", TransientError("quota"))

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result.requeue is True
    assert len(store.machines) == 1
    assert stored_status(store).unavailableReplicas == 1


def test_list_failure_requeues(store, kcp, cluster, recorder):
    store.fail("list_machines", TransientError("timeout"))

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result.requeue is True
    assert store.calls["update_control_plane_status"] == 0


def test_status_conflict_is_retried_on_fresh_copy(store, kcp, cluster, recorder):
    store.fail("update_control_plane_status", ConflictError("stale"))

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result == ReconcileResult()
    assert store.calls["update_control_plane_status"] == 2
    assert store.calls["get_control_plane"] == 2
    assert stored_status(store).unavailableReplicas == 1


def test_concurrent_writer_is_not_clobbered(store, kcp, cluster, recorder):
    reconciler = ControlPlaneReconciler(store, recorder=recorder)
    original_update = store.update_control_plane_status
    bumped = []

    def racing_update(current):
        # another writer lands between our read and our first write
        if not bumped:
            bumped.append(True)
            store.bump_control_plane(NAMESPACE, "tenant-cp")
        return original_update(current)

    store.update_control_plane_status = racing_update

    result = reconciler.reconcile(KEY)

    assert result == ReconcileResult()
    assert store.calls["update_control_plane_status"] == 2
    assert stored_status(store).unavailableReplicas == 1


def test_persistent_status_conflict_requeues(store, kcp, cluster, recorder):
    store.fail("update_control_plane_status", ConflictError("stale"), times=3)

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result.requeue is True
    assert stored_status(store).observedGeneration is None


def test_control_plane_deleted_mid_pass(store, kcp, cluster, recorder):
    reconciler = ControlPlaneReconciler(store, recorder=recorder)
    original_converge = reconciler.machine_manager.converge

    def converge_then_delete(*args):
        result = original_converge(*args)
        del store.control_planes[(NAMESPACE, "tenant-cp")]
        return result

    reconciler.machine_manager.converge = converge_then_delete

    assert reconciler.reconcile(KEY) == ReconcileResult()


def seed_machine(store, kcp, cluster, name, ready):
    machine = MachineManager(store, name_generator=lambda base: name).build_machine(kcp, cluster)
    machine.status.ready = ready
    return store.put_machine(machine)


def test_one_ready_instance_scaled_to_three(store, cluster, recorder):
    kcp = store.put_control_plane(make_control_plane(replicas=3))
    seed_machine(store, kcp, cluster, "tenant-seed1", ready=True)
    reconciler = ControlPlaneReconciler(store, recorder=recorder)

    reconciler.reconcile(KEY)

    assert len(store.machines) == 3
    assert (NAMESPACE, "tenant-seed1") in store.machines
    status = stored_status(store)
    assert (status.readyReplicas, status.unavailableReplicas) == (1, 2)
    assert status.ready is True

    for name in owned_machines(store):
        store.set_machine_ready(name)
    reconciler.reconcile(KEY)

    status = stored_status(store)
    assert (status.readyReplicas, status.unavailableReplicas) == (3, 0)
    assert store.calls["create_machine"] == 2


def test_scale_to_zero_deletes_instances_and_reports(store, cluster, recorder):
    kcp = store.put_control_plane(make_control_plane(replicas=0))
    seed_machine(store, kcp, cluster, "tenant-seed1", ready=True)
    seed_machine(store, kcp, cluster, "tenant-seed2", ready=False)

    ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert store.machines == {}
    status = stored_status(store)
    assert status.readyReplicas == 0
    assert status.unavailableReplicas == 0
    assert status.ready is False
    assert status.failureReason == "InsufficientReadyReplicas"


def test_terminating_control_plane_is_left_alone(store, cluster, recorder):
    kcp = make_control_plane(replicas=2)
    kcp.metadata.deletionTimestamp = T0
    store.put_control_plane(kcp)

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result == ReconcileResult()
    assert store.machines == {}
    assert store.credentials == {}
    assert store.calls["get_cluster"] == 0
    assert recorder.events == []


def test_undecodable_stored_ca_is_reported(store, kcp, cluster, recorder):
    store.create_credential(
        build_credential(kcp, cluster, "ca", {"tls.crt": "garbage", "tls.key": "garbage"})
    )

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result == ReconcileResult()
    assert store.machines == {}
    status = stored_status(store)
    assert status.failureReason == InvalidCredentialError.reason
    assert "tenant-ca" in status.failureMessage
    assert recorder.events[0][0] == InvalidCredentialError.reason
    assert recorder.events[0][2] is True


def test_invalid_service_cidr_is_reported(store, kcp, recorder):
    store.put_cluster(make_cluster(services=["not-a-cidr"]))

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result == ReconcileResult()
    assert store.machines == {}
    status = stored_status(store)
    assert status.failureReason == InvalidClusterNetworkError.reason
    assert "not-a-cidr" in status.failureMessage


def test_vanished_concurrent_credential_requeues(store, kcp, cluster, recorder):
    store.fail("create_credential", ConflictError("already exists"))

    result = ControlPlaneReconciler(store, recorder=recorder).reconcile(KEY)

    assert result.requeue is True
    assert store.machines == {}


def test_events_are_logged_without_a_recorder(store, kcp, cluster, caplog):
    caplog.set_level(logging.DEBUG, logger="kink.reconciler")

    ControlPlaneReconciler(store).reconcile(KEY)

    assert f"Event CredentialsCreated on {KEY}" in caplog.text
    assert f"Event MachinesScaled on {KEY}" in caplog.text
