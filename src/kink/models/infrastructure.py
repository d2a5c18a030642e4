"""Infrastructure CRD models: KinkMachine and KinkCluster."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from kink.crd.base import CRDResource, CRDSpec, CRDStatus, OwnerReference
from kink.crd.registry import CRDRegistry

INFRASTRUCTURE_GROUP = "infrastructure.cluster.x-k8s.io"
MACHINE_VERSION = "v1beta1"
MACHINE_KIND = "KinkMachine"
MACHINE_PLURAL = "kinkmachines"
KINK_CLUSTER_VERSION = "v1alpha1"
KINK_CLUSTER_PLURAL = "kinkclusters"

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
CONTROL_PLANE_LABEL = "cluster.x-k8s.io/control-plane"


class APIEndpoint(BaseModel):
    """Address of a control plane API server."""

    host: str = Field(default="", description="Hostname or IP of the endpoint")
    port: int = Field(default=0, description="Port of the endpoint")

    def is_valid(self):
        return bool(self.host) and self.port != 0

    def __str__(self):
        return f"{self.host}:{self.port}"


class KinkMachineStatus(CRDStatus):
    """Observed state of one control plane replica."""

    ready: bool = Field(default=False, description="Whether the replica serves requests")
    pods: List[Dict[str, Any]] = Field(
        default_factory=list, description="References to the replica's pods"
    )
    failureReason: Optional[str] = Field(default=None, description="Failure token")
    failureMessage: Optional[str] = Field(default=None, description="Failure description")


@CRDRegistry.register(
    INFRASTRUCTURE_GROUP,
    MACHINE_VERSION,
    MACHINE_KIND,
    MACHINE_PLURAL,
    status_model=KinkMachineStatus,
    short_names=["km"],
)
class KinkMachineSpec(CRDSpec):
    """KinkMachine CRD specification."""

    version: Optional[str] = Field(
        default=None, description="Kubernetes version of this control plane replica"
    )


class KinkMachine(CRDResource):
    spec: KinkMachineSpec = Field(default_factory=KinkMachineSpec)
    status: KinkMachineStatus = Field(default_factory=KinkMachineStatus)

    @property
    def key(self):
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def cluster_name(self):
        return self.metadata.labels.get(CLUSTER_NAME_LABEL, "")

    def owner_reference(self):
        """Owner reference that marks this machine as the controller of its pods."""
        return OwnerReference(
            apiVersion=f"{INFRASTRUCTURE_GROUP}/{MACHINE_VERSION}",
            kind=MACHINE_KIND,
            name=self.metadata.name,
            uid=self.metadata.uid,
            controller=True,
            blockOwnerDeletion=True,
        )


class KinkClusterStatus(CRDStatus):
    ready: bool = Field(default=False, description="Whether the infrastructure is ready")
    failureReason: Optional[str] = Field(default=None)
    failureMessage: Optional[str] = Field(default=None)


@CRDRegistry.register(
    INFRASTRUCTURE_GROUP,
    KINK_CLUSTER_VERSION,
    "KinkCluster",
    KINK_CLUSTER_PLURAL,
    status_model=KinkClusterStatus,
)
class KinkClusterSpec(CRDSpec):
    """KinkCluster CRD specification."""

    controlPlaneEndpoint: Optional[APIEndpoint] = Field(
        default=None, description="Endpoint used to communicate with the control plane"
    )
