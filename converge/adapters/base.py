"""
Driver base — the contract between the engine and a package manager.

The engine only talks to package managers through this interface,
never directly to winget, apt or brew. Query operations raise
DriverError when they cannot answer; ``install`` reports the
installer's outcome as an InstallResponse and leaves classification
(success, already installed, not found) to the engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel


class InstallResponse(BaseModel):
    """Raw outcome of one installer invocation."""

    output: str = ""
    exit_code: int = 0


class Driver(ABC):
    """Abstract base class for package-manager drivers.

    To create a new driver:
        1. Subclass Driver
        2. Implement name, is_available, list_installed, install, export
        3. Register it in the DriverRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The driver identifier (e.g., 'winget', 'apt', 'brew')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying tool exists. Fast, never raises."""

    @abstractmethod
    def list_installed(self) -> set[str]:
        """Package refs currently installed.

        Raises:
            DriverError: If the package manager cannot be queried.
        """

    @property
    def parallel_safe(self) -> bool:
        """Whether installs may run concurrently.

        False for package managers that hold a global lock while
        installing (dpkg, Homebrew); the engine then runs every install
        of this driver one at a time.
        """
        return True

    def installed_versions(self) -> dict[str, str]:
        """Installed version per ref, where the driver knows it."""
        return {}

    @abstractmethod
    def install(self, ref: str, silent: bool = True) -> InstallResponse:
        """Install one package and return the installer's raw outcome."""

    @abstractmethod
    def export(self, path: Path) -> bool:
        """Write the package manager's own export of installed packages."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
