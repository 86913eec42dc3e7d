"""
Configuration — manifest resolution, content hashing, runtime settings.
"""

from converge.core.config.hashing import compute_hash, manifest_hash
from converge.core.config.loader import resolve_manifest
from converge.core.config.settings import Settings, current_platform, load_settings

__all__ = [
    "Settings",
    "compute_hash",
    "current_platform",
    "load_settings",
    "manifest_hash",
    "resolve_manifest",
]
