"""KinkControlPlane CRD models."""

from typing import Optional

from pydantic import Field

from kink.crd.base import CRDResource, CRDSpec, CRDStatus, OwnerReference
from kink.crd.registry import CRDRegistry

CONTROL_PLANE_GROUP = "controlplane.cluster.x-k8s.io"
CONTROL_PLANE_VERSION = "v1beta1"
CONTROL_PLANE_KIND = "KinkControlPlane"
CONTROL_PLANE_PLURAL = "kinkcontrolplanes"


class KinkControlPlaneStatus(CRDStatus):
    """Observed state of a virtual control plane."""

    version: Optional[str] = Field(
        default=None,
        description="Lowest Kubernetes version among the control plane machines",
    )
    readyReplicas: int = Field(
        default=0, ge=0, description="Number of ready control plane machines"
    )
    unavailableReplicas: int = Field(
        default=0, ge=0, description="Number of owned machines that are not ready"
    )
    initialized: bool = Field(
        default=False, description="Whether a machine has ever become ready"
    )
    ready: bool = Field(
        default=False, description="Whether the API server can receive requests"
    )
    failureReason: Optional[str] = Field(
        default=None, description="Machine-readable failure token"
    )
    failureMessage: Optional[str] = Field(
        default=None, description="Human-readable failure description"
    )
    externalManagedControlPlane: bool = Field(
        default=True,
        description="Tenant Node objects do not exist in the management cluster",
    )


@CRDRegistry.register(
    CONTROL_PLANE_GROUP,
    CONTROL_PLANE_VERSION,
    CONTROL_PLANE_KIND,
    CONTROL_PLANE_PLURAL,
    status_model=KinkControlPlaneStatus,
    short_names=["kcp"],
)
class KinkControlPlaneSpec(CRDSpec):
    """KinkControlPlane CRD specification."""

    replicas: int = Field(
        default=0, ge=0, description="Desired number of control plane machines"
    )
    version: Optional[str] = Field(
        default=None, description="Kubernetes version for the control plane"
    )
    clusterName: str = Field(
        default="", description="Name of the Cluster API cluster in the same namespace"
    )
    kubeconf: Optional[str] = Field(
        default=None,
        description="Externally supplied admin kubeconfig; skips bootstrap kubeconfig generation",
    )
    credentialsName: Optional[str] = Field(
        default=None, description="Credential for workers to join the tenant control plane"
    )


class KinkControlPlane(CRDResource):
    spec: KinkControlPlaneSpec = Field(default_factory=KinkControlPlaneSpec)
    status: KinkControlPlaneStatus = Field(default_factory=KinkControlPlaneStatus)

    @property
    def key(self):
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def external_admin(self):
        """Whether the admin credential is supplied from outside."""
        return bool(self.spec.kubeconf)

    def owner_reference(self):
        """Owner reference that marks this control plane as the controller."""
        return OwnerReference(
            apiVersion=f"{CONTROL_PLANE_GROUP}/{CONTROL_PLANE_VERSION}",
            kind=CONTROL_PLANE_KIND,
            name=self.metadata.name,
            uid=self.metadata.uid,
            controller=True,
            blockOwnerDeletion=True,
        )

