"""
Error hierarchy — every failure the core raises on purpose.

Manifest and configuration errors are fatal and surface before any
action runs. Driver, state, and restore errors are recovered per
action (or per history entry) by the caller.
"""

from __future__ import annotations

from pathlib import Path


class ConvergeError(Exception):
    """Base class for all converge errors."""


class ConfigError(ConvergeError):
    """Raised when converge.yml or CONVERGE_* settings are invalid."""


class ManifestError(ConvergeError):
    """A manifest document could not be loaded or is malformed.

    Carries the offending file and, when the parser reports one,
    the 1-based line number.
    """

    def __init__(self, message: str, path: Path | str | None = None, line: int | None = None):
        self.path = str(path) if path is not None else None
        self.line = line
        self.reason = message
        location = ""
        if self.path:
            location = self.path if line is None else f"{self.path}:{line}"
        super().__init__(f"{location}: {message}" if location else message)


class CircularIncludeError(ManifestError):
    """An include chain refers back to a document already on the chain."""

    def __init__(self, chain: list[str]):
        self.chain = list(chain)
        cycle = " -> ".join(self.chain)
        super().__init__(f"Circular include: {cycle}", path=self.chain[0] if self.chain else None)


class DriverError(ConvergeError):
    """A package-manager query or install could not be performed."""


class StateError(ConvergeError):
    """A persisted run record is unreadable or invalid."""


class RestoreError(ConvergeError):
    """A restore item could not be applied."""
