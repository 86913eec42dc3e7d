"""
Runtime context — everything a use case needs, built once per process.

The CLI builds a Runtime from Settings at startup; tests build one
around a MockDriver and a temp state directory. Use cases never reach
for globals.
"""

from __future__ import annotations

import getpass
import logging
import platform as _platform
from dataclasses import dataclass, field

from converge.adapters.base import Driver
from converge.adapters.registry import DriverRegistry, default_registry
from converge.adapters.restorers import RestorerRegistry, default_restorers
from converge.adapters.verifiers import VerifierRegistry, default_verifiers
from converge.core.config.settings import Settings
from converge.core.engine.partition import DEFAULT_DENYLIST, Denylist
from converge.core.persistence.state_file import StateRecorder

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Settings plus the collaborators derived from them."""

    settings: Settings
    drivers: DriverRegistry
    recorder: StateRecorder
    denylist: Denylist = DEFAULT_DENYLIST
    verifiers: VerifierRegistry = field(default_factory=default_verifiers)
    restorers: RestorerRegistry = field(default_factory=default_restorers)

    @property
    def platform(self) -> str:
        return self.settings.platform

    def driver(self) -> Driver:
        """The configured driver, or the platform default.

        Raises:
            DriverError: If no such driver is registered.
        """
        return self.drivers.resolve(self.settings.driver, self.settings.platform)


def build_runtime(
    settings: Settings,
    drivers: DriverRegistry | None = None,
    verifiers: VerifierRegistry | None = None,
    restorers: RestorerRegistry | None = None,
) -> Runtime:
    """Assemble a Runtime from settings."""
    denylist = DEFAULT_DENYLIST
    if settings.denylist_extra:
        denylist = denylist.extend(settings.denylist_extra)
    return Runtime(
        settings=settings,
        drivers=drivers or default_registry(),
        recorder=StateRecorder(settings.state_path),
        denylist=denylist,
        verifiers=verifiers or default_verifiers(),
        restorers=restorers or default_restorers(),
    )


def machine_identity() -> tuple[str, str]:
    """(hostname, user) for run records."""
    try:
        user = getpass.getuser()
    except (OSError, KeyError, ImportError):
        user = ""
    return _platform.node(), user
