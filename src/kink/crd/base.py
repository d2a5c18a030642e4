"""Base classes for CRD specifications and the object metadata they travel with."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class OwnerReference(BaseModel):
    """Reference from a dependent object to the object that owns it."""

    apiVersion: str
    kind: str
    name: str
    uid: str
    controller: Optional[bool] = None
    blockOwnerDeletion: Optional[bool] = None


class CRDMetadata(BaseModel):
    """Standard Kubernetes metadata for CRDs."""

    name: str = ""
    generateName: Optional[str] = None
    namespace: Optional[str] = None
    uid: Optional[str] = None
    resourceVersion: Optional[str] = None
    generation: Optional[int] = None
    creationTimestamp: Optional[datetime] = None
    deletionTimestamp: Optional[datetime] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    ownerReferences: List[OwnerReference] = Field(default_factory=list)

    class Config:
        extra = "ignore"

    def controller_reference(self):
        """Return the owner reference marked as controller, if any."""
        for ref in self.ownerReferences:
            if ref.controller:
                return ref
        return None

    def is_controlled_by(self, owner):
        """Whether ``owner`` (a CRDMetadata) is this object's controller."""
        ref = self.controller_reference()
        return ref is not None and owner.uid is not None and ref.uid == owner.uid


class CRDCondition(BaseModel):
    """Custom Kubernetes condition."""

    type: str
    status: str  # True, False, Unknown
    reason: str
    message: str
    lastTransitionTime: Optional[datetime] = None


class CRDStatus(BaseModel):
    """Base class for all CRD status objects."""

    conditions: List[CRDCondition] = Field(default_factory=list)
    observedGeneration: Optional[int] = None

    class Config:
        extra = "allow"


class CRDSpec(BaseModel):
    """Base class for all CRD spec objects."""

    class Config:
        extra = "forbid"
        validate_assignment = True


class CRDResource(BaseModel):
    """A full custom object: metadata plus typed spec and status."""

    apiVersion: Optional[str] = None
    kind: Optional[str] = None
    metadata: CRDMetadata = Field(default_factory=CRDMetadata)

    class Config:
        extra = "ignore"

    def to_body(self):
        """Serialise to the JSON body the API server expects."""
        return self.model_dump(mode="json", exclude_none=True)
