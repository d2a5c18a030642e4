"""Bootstrap admin kubeconfig for a tenant control plane."""

import base64
import logging

import yaml

from kink.errors import TransientError
from kink.models.credential import KUBECONFIG_KEY
from kink.services import pki
from kink.services.certificates import (
    KUBEADM_SYSTEM_PRIVILEGED_GROUP,
    build_credential,
    create_credential,
    load_key_pair,
    lookup_credential,
)

logger = logging.getLogger(__name__)

KUBECONFIG_PURPOSE = "kubeconfig"
CLUSTER_CA_PURPOSE = "ca"
ADMIN_COMMON_NAME = "kubernetes-admin"


def _b64(text):
    return base64.b64encode(text.encode()).decode()


def render_kubeconfig(cluster_name, server, ca_pem, client_cert_pem, client_key_pem):
    """Render a single-context kubeconfig as YAML."""
    user_name = f"{cluster_name}-admin"
    context_name = f"{user_name}@{cluster_name}"
    config = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": cluster_name,
                "cluster": {
                    "server": server,
                    "certificate-authority-data": _b64(ca_pem),
                },
            }
        ],
        "contexts": [
            {
                "name": context_name,
                "context": {"cluster": cluster_name, "user": user_name},
            }
        ],
        "current-context": context_name,
        "users": [
            {
                "name": user_name,
                "user": {
                    "client-certificate-data": _b64(client_cert_pem),
                    "client-key-data": _b64(client_key_pem),
                },
            }
        ],
    }
    return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)


def lookup_or_generate_kubeconfig(store, owner, cluster):
    """Create ``<cluster>-kubeconfig`` signed by the cluster CA unless it exists.

    Returns:
        bool: True if the kubeconfig was created by this call
    """
    if lookup_credential(store, cluster, KUBECONFIG_PURPOSE) is not None:
        return False

    ca = lookup_credential(store, cluster, CLUSTER_CA_PURPOSE)
    if ca is None:
        raise TransientError(
            f"cluster CA for {cluster.namespace}/{cluster.name} is not available yet"
        )

    ca_cert, ca_key = load_key_pair(ca)
    client_config = pki.CertConfig(
        common_name=ADMIN_COMMON_NAME,
        organization=[KUBEADM_SYSTEM_PRIVILEGED_GROUP],
        usages=[pki.CLIENT_AUTH],
    )
    cert, key = pki.new_cert_and_key(ca_cert, ca_key, client_config)

    server = f"https://{cluster.spec.controlPlaneEndpoint}"
    value = render_kubeconfig(
        cluster.name,
        server,
        ca.certificate_pem,
        pki.encode_cert_pem(cert),
        pki.encode_private_key_pem(key),
    )

    credential = build_credential(owner, cluster, KUBECONFIG_PURPOSE, {KUBECONFIG_KEY: value})
    _, was_created = create_credential(store, credential)
    if was_created:
        logger.info(f"Generated kubeconfig for cluster {cluster.namespace}/{cluster.name}")
    return was_created
