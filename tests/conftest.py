"""
Shared test fixtures and configuration.
"""

import json
from pathlib import Path

import pytest

from converge.adapters.mock import MockDriver
from converge.adapters.registry import DriverRegistry
from converge.core.config.settings import Settings
from converge.core.use_cases.context import Runtime, build_runtime


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for run records."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def mock_driver() -> MockDriver:
    """A mock driver with git installed at 2.44.0."""
    return MockDriver(installed={"Git.Git": "2.44.0"})


@pytest.fixture
def runtime(tmp_state_dir: Path, mock_driver: MockDriver) -> Runtime:
    """Runtime on the windows platform, driving the mock driver."""
    drivers = DriverRegistry()
    drivers.register(mock_driver)
    settings = Settings(state_dir=str(tmp_state_dir), platform="windows", driver="mock", throttle=3)
    return build_runtime(settings, drivers=drivers)


@pytest.fixture
def write_manifest(tmp_path: Path):
    """Write a manifest dict as JSON and return its path."""

    def _write(data: dict, name: str = "machine.json", directory: Path | None = None) -> Path:
        target = (directory or tmp_path) / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return target

    return _write


@pytest.fixture
def basic_manifest(write_manifest) -> Path:
    """Two apps: git (installed) and vscode (missing)."""
    return write_manifest({
        "version": 1,
        "name": "workstation",
        "apps": [
            {"id": "git", "refs": {"windows": "Git.Git", "linux": "git"}},
            {"id": "vscode", "refs": {"windows": "Microsoft.VisualStudioCode"}},
        ],
    })
