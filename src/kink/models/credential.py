"""Credential material persisted as Kubernetes Secrets."""

from typing import Dict

from pydantic import Field

from kink.crd.base import CRDResource

CLUSTER_SECRET_TYPE = "cluster.x-k8s.io/secret"
TLS_CRT_KEY = "tls.crt"
TLS_KEY_KEY = "tls.key"
KUBECONFIG_KEY = "value"


def credential_name(cluster_name, purpose):
    """Secret name consumers mount: ``<cluster>-<purpose>``."""
    return f"{cluster_name}-{purpose}"


class Credential(CRDResource):
    """A named blob of trust material scoped to one cluster.

    ``data`` holds decoded text values; the store handles base64.
    """

    type: str = CLUSTER_SECRET_TYPE
    data: Dict[str, str] = Field(default_factory=dict)

    @property
    def name(self):
        return self.metadata.name

    @property
    def certificate_pem(self):
        return self.data.get(TLS_CRT_KEY, "")

    @property
    def key_pem(self):
        return self.data.get(TLS_KEY_KEY, "")
