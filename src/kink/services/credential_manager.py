"""Provision all trust material a control plane needs before it can start."""

import logging

from kink.models.credential import TLS_CRT_KEY, TLS_KEY_KEY, credential_name
from kink.services import pki
from kink.services.certificates import (
    build_credential,
    build_tree,
    create_credential,
    get_certs,
    issue_tree,
    lookup_credential,
)
from kink.services.kubeconfig import KUBECONFIG_PURPOSE, lookup_or_generate_kubeconfig

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_PURPOSE = "sa"


class CredentialManager:
    """Lookup-or-generate the CA tree, the service-account key pair and kubeconfig."""

    def __init__(self, store, cluster, owner, catalog=None):
        self.store = store
        self.cluster = cluster
        self.owner = owner
        self.catalog = catalog if catalog is not None else get_certs()

    def lookup_or_generate_cas(self):
        """Issue the certificate tree and the service-account signing key.

        Raises:
            CatalogError: the catalog does not resolve; nothing is written
            TransientError: a store call failed

        Returns:
            list: names of the credentials created by this call
        """
        tree = build_tree(self.catalog)
        created = issue_tree(tree, self.store, self.owner, self.cluster)

        if self._lookup_or_generate_sa_key():
            created.append(credential_name(self.cluster.name, SERVICE_ACCOUNT_PURPOSE))
        return created

    def _lookup_or_generate_sa_key(self):
        if lookup_credential(self.store, self.cluster, SERVICE_ACCOUNT_PURPOSE) is not None:
            return False

        key = pki.new_private_key()
        data = {
            TLS_CRT_KEY: pki.encode_public_key_pem(key.public_key()),
            TLS_KEY_KEY: pki.encode_private_key_pem(key),
        }
        credential = build_credential(self.owner, self.cluster, SERVICE_ACCOUNT_PURPOSE, data)
        _, was_created = create_credential(self.store, credential)
        if was_created:
            logger.info(f"Generated service account key pair {credential.name}")
        return was_created

    def lookup_or_generate_kubeconfig(self):
        """Create the bootstrap kubeconfig unless the admin credential is external."""
        if self.owner.external_admin:
            logger.debug(
                f"KinkControlPlane {self.owner.key} supplies its own kubeconfig, skipping"
            )
            return False
        return lookup_or_generate_kubeconfig(self.store, self.owner, self.cluster)

    def provision(self):
        """Run every credential step in order.

        Returns:
            list: names of the credentials created by this call
        """
        created = self.lookup_or_generate_cas()
        if self.lookup_or_generate_kubeconfig():
            created.append(credential_name(self.cluster.name, KUBECONFIG_PURPOSE))
        return created
