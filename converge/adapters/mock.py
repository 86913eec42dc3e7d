"""
Mock driver — test double for package-manager operations.

Simulates a package manager without touching the machine. By default
every install succeeds; specific refs can be configured to fail, to
report "already installed" or "not found", or to raise. Thread-safe,
and it records the peak number of concurrent installs so tests can
check throttling.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

from converge.adapters.base import Driver, InstallResponse
from converge.core.errors import DriverError


class MockDriver(Driver):
    """Universal mock driver for testing."""

    def __init__(
        self,
        installed: dict[str, str] | set[str] | None = None,
        driver_name: str = "mock",
        available: bool = True,
        delay: float = 0.0,
        parallel_safe: bool = True,
    ):
        if isinstance(installed, set):
            installed = {ref: "" for ref in installed}
        self._installed: dict[str, str] = dict(installed or {})
        self._name = driver_name
        self._available = available
        self._delay = delay
        self._parallel_safe = parallel_safe
        self._responses: dict[str, InstallResponse] = {}
        self._faults: dict[str, Exception] = {}
        self._list_error: str | None = None
        self._lock = threading.Lock()
        self._calls: list[str] = []
        self._active = 0
        self._peak = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def parallel_safe(self) -> bool:
        return self._parallel_safe

    @property
    def calls(self) -> list[str]:
        """Refs passed to install, in call order."""
        with self._lock:
            return list(self._calls)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def peak_concurrency(self) -> int:
        with self._lock:
            return self._peak

    def is_available(self) -> bool:
        return self._available

    def set_response(self, ref: str, output: str = "", exit_code: int = 0) -> None:
        """Set the raw installer outcome for a ref."""
        self._responses[ref] = InstallResponse(output=output, exit_code=exit_code)

    def set_failure(self, ref: str, output: str = "Installer failed", exit_code: int = 1) -> None:
        self.set_response(ref, output=output, exit_code=exit_code)

    def set_fault(self, ref: str, error: Exception | None = None) -> None:
        """Make install(ref) raise instead of returning."""
        self._faults[ref] = error or RuntimeError(f"mock fault for {ref}")

    def fail_listing(self, message: str = "mock listing failure") -> None:
        self._list_error = message

    def list_installed(self) -> set[str]:
        if self._list_error:
            raise DriverError(self._list_error)
        with self._lock:
            return set(self._installed)

    def installed_versions(self) -> dict[str, str]:
        if self._list_error:
            raise DriverError(self._list_error)
        with self._lock:
            return {ref: v for ref, v in self._installed.items() if v}

    def install(self, ref: str, silent: bool = True) -> InstallResponse:
        with self._lock:
            self._calls.append(ref)
            self._active += 1
            self._peak = max(self._peak, self._active)
        try:
            if self._delay:
                time.sleep(self._delay)
            if ref in self._faults:
                raise self._faults[ref]
            response = self._responses.get(ref)
            if response is None:
                response = InstallResponse(output=f"[mock] installed {ref}", exit_code=0)
            if response.exit_code == 0:
                with self._lock:
                    self._installed.setdefault(ref, "")
            return response
        finally:
            with self._lock:
                self._active -= 1

    def export(self, path: Path) -> bool:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(sorted(self.list_installed())) + "\n", encoding="utf-8")
        return True

    def reset(self) -> None:
        """Clear call log and custom responses."""
        with self._lock:
            self._calls.clear()
            self._responses.clear()
            self._faults.clear()
            self._peak = 0
