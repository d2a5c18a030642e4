"""Aggregate machine readiness into the KinkControlPlane status."""

import re
from typing import Optional

from pydantic import BaseModel

INSUFFICIENT_REPLICAS_REASON = "InsufficientReadyReplicas"
INSUFFICIENT_REPLICAS_MESSAGE = "insufficient ready replicas"


class StatusDelta(BaseModel):
    """Status fields recomputed from one observation of the machines."""

    readyReplicas: int = 0
    unavailableReplicas: int = 0
    initialized: bool = False
    ready: bool = False
    failureReason: Optional[str] = None
    failureMessage: Optional[str] = None
    version: Optional[str] = None

    def apply(self, status):
        """Copy the delta onto a KinkControlPlaneStatus in place."""
        for name, value in self.model_dump().items():
            setattr(status, name, value)
        return status


def version_key(version):
    """Order ``v1.27.3``-style versions numerically; unparsable ones sort last."""
    numbers = re.findall(r"\d+", version or "")
    if not numbers:
        return (1, ())
    return (0, tuple(int(n) for n in numbers))


def aggregate(instances, owner):
    """Count ready and unavailable machines genuinely controlled by ``owner``.

    ``initialized`` stays true once the control plane has been ready; every
    other field depends only on ``instances``.
    """
    ready_replicas = 0
    unavailable_replicas = 0
    versions = []

    for machine in instances:
        if not machine.metadata.is_controlled_by(owner.metadata):
            continue
        if machine.status.ready:
            ready_replicas += 1
        else:
            unavailable_replicas += 1
        if machine.spec.version:
            versions.append(machine.spec.version)

    ready = ready_replicas > 0
    delta = StatusDelta(
        readyReplicas=ready_replicas,
        unavailableReplicas=unavailable_replicas,
        initialized=ready or owner.status.initialized,
        ready=ready,
        version=min(versions, key=version_key) if versions else None,
    )
    if not ready:
        delta.failureReason = INSUFFICIENT_REPLICAS_REASON
        delta.failureMessage = INSUFFICIENT_REPLICAS_MESSAGE
    return delta
