"""
Adapters — package-manager drivers, verifiers and restorers.
"""

from converge.adapters.base import Driver, InstallResponse

__all__ = ["Driver", "InstallResponse"]
