"""Read-only view of the Cluster API ``Cluster`` objects the operator consumes."""

from typing import List, Optional

from pydantic import BaseModel, Field

from kink.crd.base import CRDResource
from kink.models.infrastructure import APIEndpoint

CLUSTER_GROUP = "cluster.x-k8s.io"
CLUSTER_VERSION = "v1beta1"
CLUSTER_PLURAL = "clusters"

DEFAULT_SERVICE_SUBNET = "192.168.0.0/24"
DEFAULT_SERVICE_DOMAIN = "cluster.local"


class _Lenient(BaseModel):
    class Config:
        extra = "ignore"


class NetworkRanges(_Lenient):
    cidrBlocks: List[str] = Field(default_factory=list)


class ClusterNetwork(_Lenient):
    services: Optional[NetworkRanges] = None
    serviceDomain: Optional[str] = None


class ObjectReference(_Lenient):
    apiVersion: Optional[str] = None
    kind: Optional[str] = None
    name: Optional[str] = None
    namespace: Optional[str] = None


class ClusterSpec(_Lenient):
    controlPlaneEndpoint: APIEndpoint = Field(default_factory=APIEndpoint)
    clusterNetwork: ClusterNetwork = Field(default_factory=ClusterNetwork)
    controlPlaneRef: Optional[ObjectReference] = None
    infrastructureRef: Optional[ObjectReference] = None


class ClusterStatus(_Lenient):
    infrastructureReady: bool = False
    controlPlaneReady: bool = False


class Cluster(CRDResource):
    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def name(self):
        return self.metadata.name

    @property
    def namespace(self):
        return self.metadata.namespace

    @property
    def service_subnet(self):
        services = self.spec.clusterNetwork.services
        if services and services.cidrBlocks:
            return services.cidrBlocks[0]
        return DEFAULT_SERVICE_SUBNET

    @property
    def service_domain(self):
        return self.spec.clusterNetwork.serviceDomain or DEFAULT_SERVICE_DOMAIN
