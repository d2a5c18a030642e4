"""CRD management system for the kink operator."""

from .registry import CRDRegistry
from .base import CRDSpec, CRDStatus, CRDMetadata, CRDResource, OwnerReference

__all__ = [
    "CRDRegistry",
    "CRDSpec",
    "CRDStatus",
    "CRDMetadata",
    "CRDResource",
    "OwnerReference",
]
