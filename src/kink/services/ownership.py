"""Explicit cascade deletion of the objects a KinkControlPlane owns."""

import logging

from kink.errors import NotFoundError

logger = logging.getLogger(__name__)


def cascade_delete(store, owner, cluster_name):
    """Delete machines and credentials controlled by ``owner``.

    Objects are found through the cluster label and then filtered by the
    owner's uid, so objects of other control planes sharing the label stay.
    Store errors propagate; deletion is idempotent so the caller may retry.

    Returns:
        int: number of objects deleted
    """
    namespace = owner.metadata.namespace
    deleted = 0

    for machine in store.list_machines(namespace, cluster_name):
        if not machine.metadata.is_controlled_by(owner.metadata):
            continue
        try:
            store.delete_machine(namespace, machine.metadata.name)
            deleted += 1
        except NotFoundError:
            logger.debug(f"KinkMachine {machine.metadata.name} already gone")

    for credential in store.list_credentials(namespace, cluster_name):
        if not credential.metadata.is_controlled_by(owner.metadata):
            continue
        try:
            store.delete_credential(namespace, credential.metadata.name)
            deleted += 1
        except NotFoundError:
            logger.debug(f"Secret {credential.metadata.name} already gone")

    logger.info(f"Removed {deleted} objects owned by KinkControlPlane {owner.key}")
    return deleted
