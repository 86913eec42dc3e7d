"""
Doctor use case — is this machine ready to converge?
"""

from __future__ import annotations

from pathlib import Path

from converge.core.errors import DriverError
from converge.core.observability.health import SystemHealth, check_system_health
from converge.core.use_cases.context import Runtime


def run_doctor(runtime: Runtime, manifest_path: Path | None = None) -> SystemHealth:
    """Check the driver, state directory, denylist and (optionally) a manifest."""
    driver = None
    driver_error = None
    try:
        driver = runtime.driver()
    except DriverError as e:
        driver_error = str(e)

    return check_system_health(
        driver,
        runtime.recorder.state_dir,
        runtime.denylist,
        manifest_path=manifest_path,
        driver_error=driver_error,
    )
