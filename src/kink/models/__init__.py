"""Pydantic models for all CRDs."""

# Import all models to ensure they're registered
from . import controlplane
from . import infrastructure

__all__ = ["controlplane", "infrastructure"]
