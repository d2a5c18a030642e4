"""Core Pods and Services that run one control plane replica."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from kink.crd.base import CRDResource

ROLE_LABEL = "kink.openbce.io/role"
ETCD_ROLE = "etcd"
API_SERVER_ROLE = "apiserver"

POD_RUNNING = "Running"


class PodStatus(BaseModel):
    phase: Optional[str] = None

    class Config:
        extra = "ignore"


class Pod(CRDResource):
    spec: Dict[str, Any] = Field(default_factory=dict)
    status: PodStatus = Field(default_factory=PodStatus)

    @property
    def role(self):
        return self.metadata.labels.get(ROLE_LABEL)

    @property
    def running(self):
        return self.status.phase == POD_RUNNING

    def reference(self):
        """Object reference recorded in ``KinkMachine.status.pods``."""
        return {
            "kind": "Pod",
            "name": self.metadata.name,
            "namespace": self.metadata.namespace,
            "uid": self.metadata.uid,
        }


class Service(CRDResource):
    spec: Dict[str, Any] = Field(default_factory=dict)

    @property
    def role(self):
        return self.metadata.labels.get(ROLE_LABEL)
