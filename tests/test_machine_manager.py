from itertools import count

import pytest

from conftest import NAMESPACE, make_control_plane
from kink.errors import NotFoundError, TransientError
from kink.models.infrastructure import KinkMachine
from kink.services.machine_manager import (
    MAX_NAME_LENGTH,
    NAME_ALPHABET,
    MachineManager,
    generate_name,
)


@pytest.fixture
def manager(store):
    seq = count(1)
    return MachineManager(store, name_generator=lambda base: f"{base}{next(seq):05d}")


def machine_names(store):
    return sorted(name for _, name in store.machines)


def test_generate_name_appends_random_suffix():
    name = generate_name("tenant-")

    assert name.startswith("tenant-")
    assert len(name) == len("tenant-") + 5
    assert set(name[len("tenant-"):]) <= set(NAME_ALPHABET)


def test_generate_name_truncates_long_base():
    assert len(generate_name("x" * 80)) == MAX_NAME_LENGTH


def test_scale_up_reaches_fixed_point(store, manager, kcp, cluster):
    result = manager.converge(3, kcp, cluster)

    assert result.created == ["tenant-00001", "tenant-00002", "tenant-00003"]
    assert [m.metadata.name for m in result.instances] == result.created
    assert result.changed

    again = manager.converge(3, kcp, cluster)
    assert not again.changed
    assert store.calls["create_machine"] == 3
    assert len(again.instances) == 3


def test_new_machines_are_labelled_and_owned(store, manager, kcp, cluster):
    manager.converge(1, kcp, cluster)

    machine = store.machines[(NAMESPACE, "tenant-00001")]
    assert machine.metadata.labels["cluster.x-k8s.io/cluster-name"] == "tenant"
    assert "cluster.x-k8s.io/control-plane" in machine.metadata.labels
    assert machine.metadata.is_controlled_by(kcp.metadata)
    assert machine.metadata.ownerReferences[0].kind == "KinkControlPlane"
    assert machine.spec.version == "v1.27.3"


def test_scale_down_removes_newest_first(store, manager, kcp, cluster):
    manager.converge(3, kcp, cluster)

    result = manager.converge(1, kcp, cluster)

    assert result.deleted == ["tenant-00003", "tenant-00002"]
    assert [m.metadata.name for m in result.instances] == ["tenant-00001"]
    assert machine_names(store) == ["tenant-00001"]


def test_scale_to_zero(store, manager, kcp, cluster):
    manager.converge(2, kcp, cluster)

    result = manager.converge(0, kcp, cluster)

    assert result.instances == []
    assert store.machines == {}


def test_machines_of_other_owners_are_ignored(store, manager, kcp, cluster):
    other = store.put_control_plane(make_control_plane(name="other-cp"))
    foreign = manager.build_machine(other, cluster)
    store.put_machine(foreign)

    result = manager.converge(1, kcp, cluster)

    assert result.created == ["tenant-00002"]
    assert len(store.machines) == 2

    manager.converge(0, kcp, cluster)
    assert machine_names(store) == [foreign.metadata.name]


def test_unowned_machine_with_cluster_label_is_ignored(store, manager, kcp, cluster):
    store.put_machine(
        KinkMachine.model_validate(
            {
                "metadata": {
                    "name": "stray",
                    "namespace": NAMESPACE,
                    "labels": {"cluster.x-k8s.io/cluster-name": "tenant"},
                }
            }
        )
    )

    result = manager.converge(0, kcp, cluster)

    assert result.deleted == []
    assert machine_names(store) == ["stray"]


def test_partial_create_failure_keeps_successes(store, manager, kcp, cluster):
    store.fail("create_machine", TransientError("quota"))

    result = manager.converge(3, kcp, cluster)

    assert result.failed == ["tenant-00001"]
    assert result.created == ["tenant-00002", "tenant-00003"]
    assert len(result.instances) == 2
    # the failure forces a fresh observation
    assert store.calls["list_machines"] == 2

    retry = manager.converge(3, kcp, cluster)
    assert retry.created == ["tenant-00004"]
    assert len(retry.instances) == 3


def test_delete_of_missing_machine_counts_as_deleted(store, manager, kcp, cluster):
    manager.converge(2, kcp, cluster)
    store.fail("delete_machine", NotFoundError("gone"))

    result = manager.converge(1, kcp, cluster)

    assert result.deleted == ["tenant-00002"]
    assert result.failed == []


def test_partial_delete_failure_reports_remaining(store, manager, kcp, cluster):
    manager.converge(3, kcp, cluster)
    store.fail("delete_machine", TransientError("timeout"))

    result = manager.converge(1, kcp, cluster)

    assert result.failed == ["tenant-00003"]
    assert result.deleted == ["tenant-00002"]
    assert [m.metadata.name for m in result.instances] == ["tenant-00001", "tenant-00003"]


def test_list_failure_propagates(store, manager, kcp, cluster):
    store.fail("list_machines", TransientError("timeout"))

    with pytest.raises(TransientError):
        manager.converge(1, kcp, cluster)

    assert store.calls["create_machine"] == 0
