"""Handler modules for the kink operator."""

from . import controlplane_handler
from . import infrastructure_handler
from . import machine_handler

__all__ = ["controlplane_handler", "infrastructure_handler", "machine_handler"]
