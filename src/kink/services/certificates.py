"""Certificate catalog and the CA -> leaf hierarchy issued from it.

The catalog is a flat list of :class:`CertificateDefinition`. Definitions
with an empty ``ca_name`` are roots; every other definition names the root
that signs it. :func:`build_tree` resolves those names into a
:class:`CertificateTree` and :func:`issue_tree` writes each certificate into
the credential store exactly once, CA before leaves.

Existing credentials are authoritative. A CA that already exists is loaded
back from the store to sign any missing leaves, and a leaf that already
exists is never re-issued, even when its alt names would now differ.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from cryptography.exceptions import UnsupportedAlgorithm

from kink.errors import (
    CatalogError,
    ConflictError,
    InvalidClusterNetworkError,
    InvalidCredentialError,
    NotFoundError,
    TransientError,
    UnresolvedCAError,
)
from kink.models.credential import (
    TLS_CRT_KEY,
    TLS_KEY_KEY,
    Credential,
    credential_name,
)
from kink.models.infrastructure import CLUSTER_NAME_LABEL
from kink.services import pki

logger = logging.getLogger(__name__)

KUBEADM_SYSTEM_PRIVILEGED_GROUP = "system:masters"


@dataclass
class CertificateDefinition:
    """Static description of one certificate of the control plane."""

    name: str
    long_name: str = ""
    base_name: str = ""
    ca_name: str = ""
    config: pki.CertConfig = field(default_factory=pki.CertConfig)
    mutators: List[Callable] = field(default_factory=list)

    @property
    def is_ca(self):
        return not self.ca_name

    def get_config(self, cluster):
        """Subject config with the mutators applied for the current cluster."""
        config = self.config.copy()
        for mutate in self.mutators:
            mutate(config, cluster)
        return config


@dataclass
class CertificateTree:
    """One-level tree: each root CA maps to the leaves it signs."""

    roots: Dict[str, CertificateDefinition] = field(default_factory=dict)
    leaves: Dict[str, List[CertificateDefinition]] = field(default_factory=dict)

    def items(self):
        for name, root in self.roots.items():
            yield root, self.leaves.get(name, [])

    def names(self):
        """All certificate names, each CA followed by its leaves."""
        result = []
        for root, leaves in self.items():
            result.append(root.name)
            result.extend(leaf.name for leaf in leaves)
        return result


def build_tree(catalog):
    """Resolve the catalog into a tree, failing on any unknown CA name.

    Raises:
        UnresolvedCAError: a leaf names a CA that is not a root of the catalog
        CatalogError: two definitions share a name
    """
    by_name = {}
    for definition in catalog:
        if definition.name in by_name:
            raise CatalogError(f"duplicate certificate name {definition.name!r}")
        by_name[definition.name] = definition

    tree = CertificateTree()
    for definition in by_name.values():
        if definition.is_ca:
            tree.roots[definition.name] = definition
            tree.leaves.setdefault(definition.name, [])

    for definition in by_name.values():
        if definition.is_ca:
            continue
        if definition.ca_name not in tree.roots:
            raise UnresolvedCAError(definition.name, definition.ca_name)
        tree.leaves[definition.ca_name].append(definition)

    return tree


def build_credential(owner, cluster, name, data):
    """Credential object owned by the control plane, labelled with its cluster."""
    return Credential.model_validate(
        {
            "metadata": {
                "name": credential_name(cluster.name, name),
                "namespace": cluster.namespace,
                "labels": {CLUSTER_NAME_LABEL: cluster.name},
                "ownerReferences": [owner.owner_reference().model_dump(exclude_none=True)],
            },
            "data": data,
        }
    )


def lookup_credential(store, cluster, name):
    """Return the stored credential or None when it does not exist yet."""
    try:
        return store.get_credential(cluster.namespace, credential_name(cluster.name, name))
    except NotFoundError:
        return None


def create_credential(store, credential):
    """Create the credential; if another writer got there first, return theirs."""
    try:
        return store.create_credential(credential), True
    except ConflictError:
        logger.info(f"Credential {credential.name} created concurrently, using stored copy")
        try:
            stored = store.get_credential(credential.metadata.namespace, credential.metadata.name)
        except NotFoundError as e:
            raise TransientError(
                f"Credential {credential.name} was removed right after a concurrent create"
            ) from e
        return stored, False


def load_key_pair(credential):
    """Decode the certificate and private key held by a stored credential.

    Raises:
        InvalidCredentialError: the stored PEM material does not decode
    """
    try:
        return (
            pki.decode_cert_pem(credential.certificate_pem),
            pki.decode_private_key_pem(credential.key_pem),
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidCredentialError(
            f"Credential {credential.metadata.namespace}/{credential.name} "
            f"does not hold a usable certificate and key: {e}"
        ) from e


def _cert_data(cert, key):
    return {
        TLS_CRT_KEY: pki.encode_cert_pem(cert),
        TLS_KEY_KEY: pki.encode_private_key_pem(key),
    }


def lookup_or_generate_ca(store, owner, cluster, definition, created):
    """Return the CA certificate and key, generating and storing them if absent."""
    existing = lookup_credential(store, cluster, definition.name)
    if existing is None:
        cert, key = pki.new_certificate_authority(definition.get_config(cluster))
        credential = build_credential(owner, cluster, definition.name, _cert_data(cert, key))
        existing, was_created = create_credential(store, credential)
        if was_created:
            created.append(existing.name)
            logger.info(f"Generated CA {existing.name}")
            return cert, key

    return load_key_pair(existing)


def lookup_or_generate_leaf(store, owner, cluster, definition, ca_cert, ca_key, created):
    if lookup_credential(store, cluster, definition.name) is not None:
        return

    config = definition.get_config(cluster)
    cert, key = pki.new_cert_and_key(ca_cert, ca_key, config)
    credential = build_credential(owner, cluster, definition.name, _cert_data(cert, key))
    stored, was_created = create_credential(store, credential)
    if was_created:
        created.append(stored.name)
        logger.info(f"Issued certificate {stored.name} signed by {definition.ca_name}")


def issue_tree(tree, store, owner, cluster):
    """Lookup-or-generate every certificate of the tree, CA first.

    Returns:
        list: names of the credentials created by this call
    """
    created = []
    for root, leaves in tree.items():
        ca_cert, ca_key = lookup_or_generate_ca(store, owner, cluster, root, created)
        for leaf in leaves:
            lookup_or_generate_leaf(store, owner, cluster, leaf, ca_cert, ca_key, created)
    return created


def api_server_alt_names(cluster):
    """Alternative names of the API server certificate for the current cluster."""
    try:
        service_ip = pki.api_server_virtual_ip(cluster.service_subnet)
    except ValueError as e:
        raise InvalidClusterNetworkError(
            f"Cluster {cluster.namespace}/{cluster.name} has an invalid service CIDR "
            f"{cluster.service_subnet!r}"
        ) from e

    alt_names = pki.AltNames(
        dns_names=[
            "kubernetes",
            "kubernetes.default",
            "kubernetes.default.svc",
            f"kubernetes.default.svc.{cluster.service_domain}",
        ],
        ips=[service_ip],
    )

    endpoint = cluster.spec.controlPlaneEndpoint
    if endpoint.is_valid():
        ip = pki.parse_ip(endpoint.host)
        if ip is not None:
            alt_names.ips.append(ip)
        else:
            alt_names.dns_names.append(endpoint.host)

    return alt_names


def _set_api_server_alt_names(config, cluster):
    config.alt_names = api_server_alt_names(cluster)


def root_ca():
    return CertificateDefinition(
        name="ca",
        long_name="self-signed Kubernetes CA to provision identities for other Kubernetes components",
        base_name="ca",
        config=pki.CertConfig(common_name="kubernetes"),
    )


def api_server():
    return CertificateDefinition(
        name="apiserver",
        long_name="certificate for serving the Kubernetes API",
        base_name="apiserver",
        ca_name="ca",
        config=pki.CertConfig(common_name="kube-apiserver", usages=[pki.SERVER_AUTH]),
        mutators=[_set_api_server_alt_names],
    )


def api_server_kubelet_client():
    return CertificateDefinition(
        name="apiserver-kubelet-client",
        long_name="certificate for the API server to connect to kubelet",
        base_name="apiserver-kubelet-client",
        ca_name="ca",
        config=pki.CertConfig(
            common_name="kube-apiserver-kubelet-client",
            organization=[KUBEADM_SYSTEM_PRIVILEGED_GROUP],
            usages=[pki.CLIENT_AUTH],
        ),
    )


def front_proxy_ca():
    return CertificateDefinition(
        name="front-proxy-ca",
        long_name="self-signed CA to provision identities for front proxy",
        base_name="front-proxy-ca",
        config=pki.CertConfig(common_name="front-proxy-ca"),
    )


def front_proxy_client():
    return CertificateDefinition(
        name="front-proxy-client",
        long_name="certificate for the front proxy client",
        base_name="front-proxy-client",
        ca_name="front-proxy-ca",
        config=pki.CertConfig(common_name="front-proxy-client", usages=[pki.CLIENT_AUTH]),
    )


def get_certs():
    """The certificates a control plane with a hosted etcd needs."""
    return [
        root_ca(),
        api_server(),
        api_server_kubelet_client(),
        front_proxy_ca(),
        front_proxy_client(),
    ]
