"""
Health checker — the checks behind ``converge doctor``.

Reports whether the package-manager driver is usable, whether the
state directory can be written, whether stored run records parse,
and (when given) whether a manifest resolves.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from converge.adapters.base import Driver
from converge.core.config.loader import resolve_manifest
from converge.core.engine.partition import Denylist
from converge.core.errors import ConvergeError, DriverError, StateError
from converge.core.persistence.state_file import StateRecorder

logger = logging.getLogger(__name__)


@dataclass
class ComponentHealth:
    """Health of a single component."""

    name: str
    status: str = "unknown"  # healthy, degraded, unhealthy, unknown
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate health of the machine setup."""

    status: str = "healthy"
    timestamp: str = ""
    components: list[ComponentHealth] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)
        self._recalculate()

    def _recalculate(self) -> None:
        statuses = [c.status for c in self.components]
        if any(s == "unhealthy" for s in statuses):
            self.status = "unhealthy"
        elif any(s == "degraded" for s in statuses):
            self.status = "degraded"
        elif all(s == "healthy" for s in statuses):
            self.status = "healthy"
        else:
            self.status = "unknown"

    @property
    def unhealthy_count(self) -> int:
        return sum(1 for c in self.components if c.status == "unhealthy")

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def check_driver(driver: Driver | None, error: str | None = None) -> ComponentHealth:
    """Is the driver present and able to list packages?"""
    if driver is None:
        return ComponentHealth(name="driver", status="unhealthy", message=error or "No driver")

    if not driver.is_available():
        return ComponentHealth(
            name="driver",
            status="unhealthy",
            message=f"{driver.name} is not installed or not on PATH",
            details={"driver": driver.name},
        )

    try:
        count = len(driver.list_installed())
    except DriverError as e:
        return ComponentHealth(
            name="driver",
            status="degraded",
            message=f"{driver.name} is present but cannot list packages: {e}",
            details={"driver": driver.name},
        )

    return ComponentHealth(
        name="driver",
        status="healthy",
        message=f"{driver.name} reports {count} installed packages",
        details={"driver": driver.name, "installed": count},
    )


def check_state_dir(state_dir: Path) -> ComponentHealth:
    """Can run records be written and read back?"""
    try:
        state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=state_dir, prefix=".doctor_", suffix=".tmp")
        os.close(fd)
        Path(tmp).unlink()
    except OSError as e:
        return ComponentHealth(
            name="state",
            status="unhealthy",
            message=f"State directory not writable: {e}",
            details={"path": str(state_dir)},
        )

    recorder = StateRecorder(state_dir)
    records = sorted(state_dir.glob("*.json"))
    corrupt: list[str] = []
    for path in records:
        try:
            recorder.load(path)
        except StateError:
            corrupt.append(path.name)

    details = {"path": str(state_dir), "runs": len(records), "corrupt": corrupt}
    if corrupt:
        return ComponentHealth(
            name="state",
            status="degraded",
            message=f"{len(corrupt)} of {len(records)} run records are corrupt",
            details=details,
        )
    return ComponentHealth(
        name="state",
        status="healthy",
        message=f"{len(records)} run records in {state_dir}",
        details=details,
    )


def check_manifest(path: Path) -> ComponentHealth:
    try:
        manifest = resolve_manifest(path)
    except ConvergeError as e:
        return ComponentHealth(name="manifest", status="unhealthy", message=str(e))
    return ComponentHealth(
        name="manifest",
        status="healthy",
        message=f"'{manifest.name}' resolves ({len(manifest.apps)} apps)",
        details={"path": str(path), "apps": len(manifest.apps)},
    )


def check_denylist(denylist: Denylist) -> ComponentHealth:
    return ComponentHealth(
        name="denylist",
        status="healthy",
        message=f"{len(denylist)} sequential-only patterns",
        details={"patterns": list(denylist)},
    )


def check_system_health(
    driver: Driver | None,
    state_dir: Path,
    denylist: Denylist,
    manifest_path: Path | None = None,
    driver_error: str | None = None,
) -> SystemHealth:
    """Run all checks and return aggregate status."""
    health = SystemHealth()
    health.add(check_driver(driver, driver_error))
    health.add(check_state_dir(state_dir))
    health.add(check_denylist(denylist))
    if manifest_path is not None:
        health.add(check_manifest(manifest_path))
    return health
