"""Converge the KinkMachines of a control plane towards its replica count."""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List

from kink.errors import KinkError, NotFoundError
from kink.models.infrastructure import (
    CLUSTER_NAME_LABEL,
    CONTROL_PLANE_LABEL,
    INFRASTRUCTURE_GROUP,
    MACHINE_KIND,
    MACHINE_VERSION,
    KinkMachine,
)

logger = logging.getLogger(__name__)

# Same alphabet and length as the API server's generateName suffix
NAME_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"
NAME_SUFFIX_LENGTH = 5
MAX_NAME_LENGTH = 63
MAX_GENERATED_NAME_LENGTH = MAX_NAME_LENGTH - NAME_SUFFIX_LENGTH

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def generate_name(base):
    """``base`` followed by a random 5 character suffix."""
    if len(base) > MAX_GENERATED_NAME_LENGTH:
        base = base[:MAX_GENERATED_NAME_LENGTH]
    suffix = "".join(secrets.choice(NAME_ALPHABET) for _ in range(NAME_SUFFIX_LENGTH))
    return f"{base}{suffix}"


def creation_order(machine):
    """Sort key: oldest first, name as tie-break."""
    return (machine.metadata.creationTimestamp or _EPOCH, machine.metadata.name)


@dataclass
class ConvergeResult:
    """Outcome of one convergence pass."""

    instances: List[KinkMachine] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def changed(self):
        return bool(self.created or self.deleted)


class MachineManager:
    """Replica convergence for the machines owned by one KinkControlPlane."""

    def __init__(self, store, name_generator=generate_name):
        self.store = store
        self.name_generator = name_generator

    def list_owned(self, owner, cluster):
        """Machines of the cluster controlled by ``owner``, oldest first."""
        machines = self.store.list_machines(cluster.namespace, cluster.name)
        owned = [m for m in machines if m.metadata.is_controlled_by(owner.metadata)]
        return sorted(owned, key=creation_order)

    def build_machine(self, owner, cluster):
        return KinkMachine.model_validate(
            {
                "apiVersion": f"{INFRASTRUCTURE_GROUP}/{MACHINE_VERSION}",
                "kind": MACHINE_KIND,
                "metadata": {
                    "name": self.name_generator(f"{cluster.name}-"),
                    "namespace": cluster.namespace,
                    "labels": {
                        CLUSTER_NAME_LABEL: cluster.name,
                        CONTROL_PLANE_LABEL: "",
                    },
                    "ownerReferences": [
                        owner.owner_reference().model_dump(exclude_none=True)
                    ],
                },
                "spec": {"version": owner.spec.version},
            }
        )

    def converge(self, desired, owner, cluster):
        """Create or delete machines until ``desired`` of them exist.

        Individual create/delete failures are logged and skipped so the rest
        of the batch still lands. When any of them failed the machines are
        listed again, so the returned set is always what the store holds.

        Raises:
            TransientError: listing the machines failed
        """
        machines = self.list_owned(owner, cluster)
        result = ConvergeResult()
        current = len(machines)

        if current < desired:
            for _ in range(desired - current):
                machine = self.build_machine(owner, cluster)
                try:
                    created = self.store.create_machine(machine)
                except KinkError as e:
                    logger.error(
                        f"Failed to create KinkMachine {machine.metadata.name} for "
                        f"KinkControlPlane {owner.key}: {e}"
                    )
                    result.failed.append(machine.metadata.name)
                    continue
                machines.append(created)
                result.created.append(created.metadata.name)

        elif current > desired:
            # newest first
            for machine in reversed(machines[desired:]):
                name = machine.metadata.name
                try:
                    self.store.delete_machine(machine.metadata.namespace, name)
                except NotFoundError:
                    logger.debug(f"KinkMachine {name} already gone")
                except KinkError as e:
                    logger.error(
                        f"Failed to delete KinkMachine {name} from "
                        f"KinkControlPlane {owner.key}: {e}"
                    )
                    result.failed.append(name)
                    continue
                result.deleted.append(name)
            deleted = set(result.deleted)
            machines = [m for m in machines if m.metadata.name not in deleted]

        if result.failed or len(machines) != desired:
            machines = self.list_owned(owner, cluster)

        result.instances = machines
        if result.changed:
            logger.info(
                f"KinkControlPlane {owner.key}: {len(result.created)} machines created, "
                f"{len(result.deleted)} deleted, {len(machines)}/{desired} present"
            )
        return result
