"""Kink: a Cluster API control plane provider that runs control planes as pods."""

__version__ = "0.1.0"
