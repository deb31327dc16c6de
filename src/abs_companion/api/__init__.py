"""
API Module
==========

Async client for the media server's HTTP control plane.
"""

from abs_companion.api.client import ControlPlaneClient, ControlPlaneError


__all__ = [
    "ControlPlaneClient",
    "ControlPlaneError",
]
