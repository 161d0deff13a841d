"""
Theme deployment: marker-delimited blocks, asset writes and the web pixel.
"""

from .blocks import PatchParams, patch, strip
from .service import DeploymentService, deployment_service

__all__ = ["PatchParams", "patch", "strip", "DeploymentService", "deployment_service"]
