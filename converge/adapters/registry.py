"""
Driver registry — central lookup for package-manager drivers.

The use cases never construct drivers themselves: they ask the
registry for a driver by name, or for the default driver of the
current platform.
"""

from __future__ import annotations

import logging
from typing import Any

from converge.adapters.base import Driver
from converge.adapters.commands import PRESETS, CommandDriver
from converge.core.errors import DriverError

logger = logging.getLogger(__name__)

PLATFORM_DEFAULTS = {
    "windows": "winget",
    "linux": "apt",
    "macos": "brew",
}


class DriverRegistry:
    """Central registry for drivers.

    Features:
        - Register/unregister drivers by name
        - Resolve the driver for a platform
        - Query driver availability
    """

    def __init__(self) -> None:
        self._drivers: dict[str, Driver] = {}

    def register(self, driver: Driver) -> None:
        name = driver.name
        if name in self._drivers:
            logger.warning("Overwriting existing driver: %s", name)
        self._drivers[name] = driver
        logger.debug("Registered driver: %s", name)

    def unregister(self, name: str) -> None:
        self._drivers.pop(name, None)

    def get(self, name: str) -> Driver | None:
        return self._drivers.get(name)

    def list_drivers(self) -> list[str]:
        return list(self._drivers.keys())

    def resolve(self, name: str = "", platform: str = "") -> Driver:
        """Driver by explicit name, else the platform default.

        Raises:
            DriverError: If no matching driver is registered.
        """
        wanted = name or PLATFORM_DEFAULTS.get(platform, "")
        if not wanted:
            raise DriverError(f"No default driver for platform '{platform}'")
        driver = self._drivers.get(wanted)
        if driver is None:
            raise DriverError(f"No driver registered for '{wanted}'")
        return driver

    def driver_status(self) -> dict[str, dict[str, Any]]:
        """Availability of all registered drivers."""
        status = {}
        for name, driver in self._drivers.items():
            try:
                available = driver.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": driver.__class__.__name__,
            }
        return status


def default_registry() -> DriverRegistry:
    """Registry with every built-in command driver preset."""
    registry = DriverRegistry()
    for preset in PRESETS.values():
        registry.register(CommandDriver(preset))
    return registry
